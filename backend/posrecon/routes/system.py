# backend/posrecon/routes/system.py
"""
System health endpoint.

Reports database connectivity, the state of the webhook dispatcher and the
backlog of acknowledged deliveries still sitting in the webhook inbox.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db, webhook_dispatcher
from ..services.webhook_inbox import inbox_backlog
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
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
    healthy = database["status"] == "healthy"
    backlog = None
    if healthy:
        try:
            backlog = inbox_backlog()
        except Exception:
            current_app.logger.exception("Webhook inbox backlog check failed")
            db.session.rollback()
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "checked_at": to_utc_z(utcnow()),
        "database": database,
        "webhook_dispatcher": {
            "inline": webhook_dispatcher.inline,
            "pending_jobs": webhook_dispatcher.pending_count,
        },
        "webhook_inbox": backlog,
    }), 200 if healthy else 503
