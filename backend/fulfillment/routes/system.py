# Overview: Health endpoint for liveness and database connectivity.

"""
System health endpoint.

Used by load balancers and deployment checks; never requires the X-User-Id
header.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Batch, Order
from fulfillment.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        batch_count = db.session.query(Batch).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "batches": batch_count,
                "orders": order_count,
            },
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
