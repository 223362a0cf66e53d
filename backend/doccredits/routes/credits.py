# Overview: Flask API routes for credit operations; parses input and returns JSON responses.

"""
Credit API Routes

DESIGN:
- Every route runs identity reconciliation and monthly allocation first (@require_user)
- Booking settlement returns the structured result; the error string is shown to the user
- Ledger history is read-only

STATUS CODES (settlement):
- 200: Charged
- 400: Invalid input
- 404: Patient or doctor not found
- 409: Insufficient credits
- 503: Store unavailable or transaction timed out
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.credits import VALID_TRANSACTION_TYPES
from ..models.users import ROLE_PATIENT, ROLE_ADMIN
from ..services import credit_service, ledger_service
from ..services.credit_service import (
    APPOINTMENT_CREDIT_COST,
    REASON_NOT_FOUND,
    REASON_INSUFFICIENT_BALANCE,
    REASON_INVALID,
)
from ..decorators import require_user, require_role


credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")

_SETTLEMENT_STATUS = {
    REASON_INVALID: 400,
    REASON_NOT_FOUND: 404,
    REASON_INSUFFICIENT_BALANCE: 409,
}


def _is_id(value) -> bool:
    # JSON true/false arrive as bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


@credits_bp.get("/me")
@require_user
def current_user_route():
    """Reconciled user with the balance after this request's allocation check."""
    return jsonify({
        "user": g.current_user.to_dict(),
        "allocation": {
            "status": g.allocation.status,
            "plan": g.allocation.plan_tier,
            "amount": g.allocation.amount,
        },
        "appointment_cost": APPOINTMENT_CREDIT_COST,
    }), 200


@credits_bp.post("/appointments/charge")
@require_user
@require_role(ROLE_PATIENT, ROLE_ADMIN)
def charge_appointment_route():
    """
    Charge the appointment fee when a booking is confirmed.

    Request body:
    {
        "doctor_id": 12,
        "patient_id": 7   (optional, admins only; defaults to the caller)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        doctor_id = data.get("doctor_id")
        if not _is_id(doctor_id):
            return jsonify({"success": False, "error": "doctor_id (integer) required"}), 400

        patient_id = g.current_user.id
        if data.get("patient_id") is not None:
            if g.current_user.role != ROLE_ADMIN:
                return jsonify({"success": False, "error": "Only admins may charge another patient"}), 403
            patient_id = data["patient_id"]
            if not _is_id(patient_id):
                return jsonify({"success": False, "error": "patient_id must be an integer"}), 400

        result = credit_service.charge_appointment(patient_id, doctor_id)
        if result.success:
            return jsonify(result.to_dict()), 200
        return jsonify(result.to_dict()), _SETTLEMENT_STATUS.get(result.reason, 503)

    except Exception:
        current_app.logger.exception("Failed to charge appointment")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@credits_bp.get("/transactions")
@require_user
def list_transactions_route():
    """
    Caller's ledger history, newest first.

    Query params:
    - limit: 1..200 (default 50)
    - before_id: keyset cursor (id of the last row of the previous page)
    - type: CREDIT_PURCHASE or APPOINTMENT_DEDUCTION
    """
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, 200))
    before_id = request.args.get("before_id", type=int)

    transaction_type = request.args.get("type")
    if transaction_type and transaction_type not in VALID_TRANSACTION_TYPES:
        return jsonify({"error": f"type must be one of {VALID_TRANSACTION_TYPES}"}), 400

    try:
        rows = ledger_service.get_user_transactions(
            g.current_user.id,
            limit=limit,
            before_id=before_id,
            transaction_type=transaction_type,
        )
    except Exception:
        current_app.logger.exception("Failed to load credit transactions")
        return jsonify({"error": "Internal server error"}), 500

    next_cursor = rows[-1].id if len(rows) == limit else None
    return jsonify({
        "items": [r.to_dict() for r in rows],
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200
