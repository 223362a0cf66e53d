# backend/doccredits/routes/system.py
"""
System health endpoint.

Reports database connectivity, row counts and the total credits in
circulation.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import User, CreditTransaction
from ..services import ledger_service
from doccredits.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        transaction_count = db.session.query(CreditTransaction).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "credit_transactions": transaction_count,
                "total_credits": ledger_service.total_credits(),
            }
        }
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "error": str(e),
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "checked_at": to_utc_z(utcnow()),
        "database": database,
    }), status_code
