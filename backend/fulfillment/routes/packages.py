# Overview: Flask API routes for packages; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import FulfillmentError
from ..services import package_service
from ..validation import ValidationError, clean_text, pick, require_payload
from ..decorators import with_actor, current_actor_id


packages_bp = Blueprint("packages", __name__, url_prefix="/package")


@packages_bp.patch("/status/<int:package_id>")
@with_actor
def update_package_status_route(package_id: int):
    """
    Request a package status change.

    Request body:
    {
        "status": "ready_for_dispatch",
        "notes": "..."  (optional)
    }

    Only ready_for_dispatch can be requested; later statuses follow the
    package's transport and returns.

    Returns:
        200: {"package": {...}}
        400: Invalid status or illegal transition (current_status included)
        404: Package not found
    """
    try:
        data = require_payload(request.get_json(silent=True))
        status = clean_text(pick(data, "status"), "status", max_length=32)
        if not status:
            raise ValidationError("status is required")

        package = package_service.update_status(
            package_id,
            status,
            notes=clean_text(pick(data, "notes"), "notes"),
            actor_id=current_actor_id(),
        )
        return jsonify({"package": package.to_dict()}), 200

    except (ValidationError, FulfillmentError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update package status")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@packages_bp.get("/<int:package_id>")
def get_package_route(package_id: int):
    try:
        return jsonify({"package": package_service.get_package(package_id).to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@packages_bp.get("/all")
def list_packages_route():
    result = package_service.list_packages(
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 20, type=int),
    )
    return jsonify({
        "packages": [p.to_dict() for p in result["items"]],
        "page": result["page"],
        "limit": result["limit"],
        "total": result["total"],
        "pages": result["pages"],
    }), 200


@packages_bp.get("/order/<int:order_id>")
def packages_for_order_route(order_id: int):
    try:
        packages = package_service.packages_for_order(order_id)
        return jsonify({"packages": [p.to_dict() for p in packages]}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
