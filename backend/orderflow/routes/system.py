# backend/orderflow/routes/system.py
"""
System health endpoint.

Reports database reachability and the order backlog per approval flag, for
deployment checks.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import func

from ..extensions import db
from ..models import Order
from orderflow.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and count orders by approval flag.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        rows = (
            db.session.query(Order.approval_flag, func.count(Order.id))
            .group_by(Order.approval_flag)
            .all()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"orders_by_flag": {flag.value: count for flag, count in rows}},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "checked_at": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), status_code
