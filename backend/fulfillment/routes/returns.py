# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

"""
Return API Routes

DESIGN:
- Initiate returns against delivered packages, per (product, batch) line
- Pickup scheduling, pickup, receipt
- Processing restocks the original batches
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import FulfillmentError
from ..services import return_service
from ..validation import (
    ValidationError,
    clean_text,
    coerce_optional_int,
    coerce_positive_int,
    parse_returned_items,
    pick,
    require_payload,
)
from ..decorators import with_actor, current_actor_id


returns_bp = Blueprint("returns", __name__, url_prefix="/returns")


def _error(e):
    return jsonify(e.to_dict()), e.http_status


def _internal(action: str):
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@returns_bp.post("")
@with_actor
def initiate_return_route():
    """
    Initiate a return.

    Request body:
    {
        "packageId": 12,
        "returnedItems": [{"productId": 1, "batchId": 4, "quantity": 2}],
        "returnReason": "Damaged on arrival",  (optional)
        "notes": "...",  (optional)
        "warehouseId": 1  (optional)
    }

    Returns:
        201: {"return": {...}}
        400: Invalid input, package not delivered, or InvalidQuantity
        404: Package not found
        409: DuplicateReturn (package already has an open return)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        return_doc = return_service.initiate_return(
            coerce_positive_int(pick(data, "packageId", "package_id"), "packageId"),
            parse_returned_items(pick(data, "returnedItems", "returned_items")),
            reason=clean_text(pick(data, "returnReason", "return_reason"), "returnReason"),
            notes=clean_text(pick(data, "notes"), "notes"),
            warehouse_id=coerce_optional_int(pick(data, "warehouseId", "warehouse_id"), "warehouseId"),
            actor_id=current_actor_id(),
        )
        return jsonify({"return": return_doc.to_dict()}), 201

    except (ValidationError, FulfillmentError) as e:
        return _error(e)
    except Exception:
        return _internal("initiate return")


@returns_bp.patch("/<int:return_id>/schedule-pickup")
@with_actor
def schedule_pickup_route(return_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        return_doc = return_service.schedule_pickup(
            return_id,
            coerce_positive_int(pick(data, "transporterId", "transporter_id"), "transporterId"),
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({"return": return_doc.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return _error(e)
    except Exception:
        return _internal("schedule return pickup")


@returns_bp.patch("/<int:return_id>/mark-picked-up")
@with_actor
def mark_picked_up_route(return_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        return_doc = return_service.mark_picked_up(
            return_id,
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({"return": return_doc.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return _error(e)
    except Exception:
        return _internal("mark return picked up")


@returns_bp.patch("/<int:return_id>/mark-received")
@with_actor
def mark_received_route(return_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        return_doc = return_service.mark_received(
            return_id,
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({"return": return_doc.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return _error(e)
    except Exception:
        return _internal("mark return received")


@returns_bp.patch("/<int:return_id>/process")
@with_actor
def process_return_route(return_id: int):
    """
    Restock a received return into its original batches.

    Returns:
        200: {"return": {...}}
        400: Return not received
        404: Return not found
        409: OverRestock
    """
    try:
        data = require_payload(request.get_json(silent=True))
        return_doc = return_service.process_return(
            return_id,
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({"return": return_doc.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return _error(e)
    except Exception:
        return _internal("process return")


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        return jsonify({"return": return_service.get_return(return_id).to_dict()}), 200
    except FulfillmentError as e:
        return _error(e)


@returns_bp.get("")
def list_returns_route():
    """
    Query params:
    - status: filter by return status
    - packageId: filter by package
    - page, limit: paging
    """
    try:
        result = return_service.list_returns(
            status=request.args.get("status"),
            package_id=request.args.get("packageId", type=int),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return jsonify({
            "returns": [r.to_dict() for r in result["items"]],
            "page": result["page"],
            "limit": result["limit"],
            "total": result["total"],
            "pages": result["pages"],
        }), 200
    except ValidationError as e:
        return _error(e)
