# Overview: Flask API routes for batch inventory; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import FulfillmentError
from ..services import inventory_ledger
from ..validation import (
    ValidationError,
    clean_text,
    coerce_positive_int,
    parse_supply_payload,
    pick,
    require_payload,
)
from ..decorators import with_actor, current_actor_id
from fulfillment.time_utils import to_utc_z, utcnow


inventory_bp = Blueprint("inventory", __name__, url_prefix="/inventory")


@inventory_bp.post("/supply")
@with_actor
def add_supply_route():
    """
    Receive new supply as a batch.

    Request body:
    {
        "productId": 1,
        "warehouseId": 1,
        "supplierId": 2,
        "quantity": 100,
        "mfgDate": "2025-01-01",
        "expDate": "2025-12-31",
        "unitCostCents": 250,  (optional)
        "batchNumber": "B-2025-001",  (optional, generated otherwise)
        "notes": "..."  (optional)
    }

    Returns:
        201: {"batch": {...}}
        400: Invalid input
        404: Unknown product, warehouse or supplier
    """
    try:
        cleaned = parse_supply_payload(request.get_json(silent=True))
        batch = inventory_ledger.receive_batch(actor_id=current_actor_id(), **cleaned)
        return jsonify({"batch": batch.to_dict()}), 201

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add inventory supply")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@inventory_bp.post("/damaged")
@with_actor
def mark_damaged_route():
    """
    Write off shelf units of a batch.

    Request body:
    {
        "batchId": 4,
        "quantity": 3,
        "reason": "Crushed pallet"  (optional)
    }

    Returns:
        200: {"batch": {...}, "financialLossCents": 750}
        400: Invalid input
        404: Batch not found
        409: Not enough shelf stock
    """
    try:
        data = require_payload(request.get_json(silent=True))
        result = inventory_ledger.mark_damaged(
            coerce_positive_int(pick(data, "batchId", "batch_id"), "batchId"),
            coerce_positive_int(pick(data, "quantity"), "quantity"),
            clean_text(pick(data, "reason"), "reason", max_length=255),
            actor_id=current_actor_id(),
        )
        return jsonify({
            "batch": result["batch"].to_dict(),
            "financialLossCents": result["financial_loss_cents"],
        }), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark inventory damaged")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@inventory_bp.get("/batch/track/<batch_number>")
def track_batch_route(batch_number: str):
    try:
        return jsonify(inventory_ledger.track_batch(batch_number)), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.get("/status")
def inventory_status_route():
    """
    Real-time per-batch stock with in_stock / low / out_of_stock levels.

    Query params:
    - warehouseId, productId: optional filters
    """
    rows = inventory_ledger.inventory_status(
        warehouse_id=request.args.get("warehouseId", type=int),
        product_id=request.args.get("productId", type=int),
    )
    return jsonify({
        "timestamp": to_utc_z(utcnow()),
        "inventoryStatus": rows,
    }), 200


@inventory_bp.get("/verify")
def verify_batches_route():
    """Recompute every batch's quantities from its movement history."""
    result = inventory_ledger.verify_all_batches()
    status = 200 if not result["violations"] else 409
    return jsonify(result), status
