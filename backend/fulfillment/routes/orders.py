# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Create pending orders (price snapshot per line)
- Process: FEFO allocation of every line into a single package
- Cancel before dispatch (allocations released)
- Hand a ready package to a transporter (assign-transport)
- Track by order number or tracking number

The acting user comes from the X-User-Id header (see decorators.with_actor).
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import FulfillmentError
from ..services import order_service, package_service
from ..validation import (
    ValidationError,
    clean_text,
    coerce_optional_int,
    coerce_positive_int,
    parse_order_items,
    pick,
    require_payload,
)
from ..decorators import with_actor, current_actor_id


orders_bp = Blueprint("orders", __name__, url_prefix="/order")


@orders_bp.post("/create")
@with_actor
def create_order_route():
    """
    Create a pending order.

    Request body:
    {
        "items": [{"productId": 1, "quantity": 5}, ...],
        "customerId": 3,  (optional)
        "notes": "...",  (optional)
        "idempotencyKey": "..."  (optional; also Idempotency-Key header)
    }

    Returns:
        201: {"order": {...}}
        400: Invalid input
        404: Unknown product or customer
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order = order_service.create_order(
            items=parse_order_items(pick(data, "items")),
            created_by=current_actor_id(),
            notes=clean_text(pick(data, "notes"), "notes"),
            customer_id=coerce_optional_int(pick(data, "customerId", "customer_id"), "customerId"),
            idempotency_key=request.headers.get("Idempotency-Key")
            or clean_text(pick(data, "idempotencyKey", "idempotency_key"), "idempotencyKey", max_length=128),
        )
        return jsonify({"order": order.to_dict()}), 201

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@orders_bp.post("/process/<int:order_id>")
@with_actor
def process_order_route(order_id: int):
    """
    Allocate every line of a pending order and create its package.

    Request body (optional):
    {
        "notes": "...",
        "idempotency_key": "..."  (or Idempotency-Key header)
    }

    Returns:
        200: {"order": {...}, "package": {...}}
        400: Order not pending (current_status included)
        404: Order not found
        409: AllocationFailed with per-line details
    """
    try:
        data = require_payload(request.get_json(silent=True))
        key = request.headers.get("Idempotency-Key") or clean_text(
            pick(data, "idempotencyKey", "idempotency_key"), "idempotency_key", max_length=128
        )
        result = order_service.process_order(
            order_id,
            notes=clean_text(pick(data, "notes"), "notes"),
            idempotency_key=key,
            actor_id=current_actor_id(),
        )
        return jsonify({
            "order": result["order"].to_dict(),
            "package": result["package"].to_dict(),
        }), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process order")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@orders_bp.post("/cancel/<int:order_id>")
@with_actor
def cancel_order_route(order_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        order = order_service.cancel_order(
            order_id,
            reason=clean_text(pick(data, "reason", "notes"), "reason"),
            actor_id=current_actor_id(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@orders_bp.post("/assign-transport/<int:package_id>")
@with_actor
def assign_transport_route(package_id: int):
    """
    Dispatch a ready package with a transporter.

    Request body:
    {
        "transporterId": 7,
        "notes": "..."  (optional)
    }

    Returns:
        200: {"transport": {...}, "package": {...}}
        400: Package not ready_for_dispatch
        404: Package or transporter not found
    """
    try:
        data = require_payload(request.get_json(silent=True))
        result = package_service.assign_transport(
            package_id,
            coerce_positive_int(pick(data, "transporterId", "transporter_id"), "transporterId"),
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({
            "transport": result["transport"].to_dict(),
            "package": result["package"].to_dict(),
        }), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign transport")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        package = order.package
        return jsonify({
            "order": order.to_dict(),
            "package": package.to_dict() if package else None,
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/")
def list_orders_route():
    """
    Query params:
    - status: filter by order status
    - page, limit: paging (default 1, 20)
    """
    try:
        result = order_service.list_orders(
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return jsonify({
            "orders": [o.to_dict(include_lines=False) for o in result["items"]],
            "page": result["page"],
            "limit": result["limit"],
            "total": result["total"],
            "pages": result["pages"],
        }), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/track/<identifier>")
def track_order_route(identifier: str):
    try:
        return jsonify(order_service.track_order(identifier)), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
