# Overview: Flask API routes for transports; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import FulfillmentError
from ..services import transport_service
from ..validation import ValidationError, clean_text, pick, require_payload
from ..decorators import with_actor, current_actor_id


transports_bp = Blueprint("transports", __name__, url_prefix="/transport")


@transports_bp.patch("/status/<int:transport_id>")
@with_actor
def update_transport_status_route(transport_id: int):
    """
    Advance a transport (dispatched -> in_transit -> delivered).

    Request body:
    {
        "status": "in_transit",
        "notes": "...",  (optional)
        "location": "..."  (optional)
    }

    Returns:
        200: {"transport": {...}, "previousStatus": "...", "newStatus": "..."}
        400: Illegal transition (current_status included)
        404: Transport not found
    """
    try:
        data = require_payload(request.get_json(silent=True))
        status = clean_text(pick(data, "status"), "status", max_length=32)
        if not status:
            raise ValidationError("status is required")

        result = transport_service.update_status(
            transport_id,
            status,
            notes=clean_text(pick(data, "notes"), "notes"),
            location=clean_text(pick(data, "location"), "location", max_length=255),
            actor_id=current_actor_id(),
        )
        return jsonify({
            "transport": result["transport"].to_dict(),
            "previousStatus": result["previous_status"],
            "newStatus": result["new_status"],
        }), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update transport status")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@transports_bp.get("/<int:transport_id>")
def get_transport_route(transport_id: int):
    try:
        return jsonify({"transport": transport_service.get_transport(transport_id).to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@transports_bp.get("/all")
def list_transports_route():
    result = transport_service.list_transports(
        status=request.args.get("status"),
        kind=request.args.get("kind"),
        transporter_id=request.args.get("transporterId", type=int),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 20, type=int),
    )
    return jsonify({
        "transports": [t.to_dict() for t in result["items"]],
        "page": result["page"],
        "limit": result["limit"],
        "total": result["total"],
        "pages": result["pages"],
    }), 200


@transports_bp.get("/package/<int:package_id>")
def transports_for_package_route(package_id: int):
    try:
        transports = transport_service.transports_for_package(package_id)
        return jsonify({"transports": [t.to_dict() for t in transports]}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
