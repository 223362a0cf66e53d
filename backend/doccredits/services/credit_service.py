# Overview: Service-layer operations for credits; monthly allocation and appointment settlement.

"""
Credit Allocation and Appointment Settlement Service

WHY: Patients receive a monthly credit quota from their subscription plan and
spend a fixed fee per booked appointment; the fee is paid to the doctor.

DESIGN PRINCIPLES:
- Ledger rows and the cached User.credits balance change in the same transaction
- Allocation is idempotent per (user, calendar month, plan tier)
- A plan tier change within a month re-opens the allocation gate for the new tier
- Settlement is a transfer: total credits across users never changes
- Every unit is time-bounded (CREDIT_TRANSACTION_TIMEOUT_SECONDS) and never retried
- Callers get result objects, never exceptions
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, CreditTransaction
from ..models.credits import TRANSACTION_CREDIT_PURCHASE, TRANSACTION_APPOINTMENT_DEDUCTION
from ..models.users import ROLE_PATIENT
from ..signals import notify_credits_allocated
from doccredits.time_utils import utcnow, allocation_period
from .concurrency import bounded_transaction, lock_for_update, TransactionTimeoutError, StoreUnavailableError
from .identity_service import latest_monthly_purchase
from .plan_service import quota_for, resolve_plan_tier


APPOINTMENT_CREDIT_COST = 2


class CreditError(Exception):
    """Raised for credit operation errors."""
    pass


class UserNotFoundError(CreditError):
    pass


class InsufficientCreditsError(CreditError):
    pass


# =============================================================================
# RESULT TYPES
# =============================================================================

ALLOCATION_GRANTED = "GRANTED"
ALLOCATION_ALREADY_ALLOCATED = "ALREADY_ALLOCATED"
ALLOCATION_NOT_APPLICABLE = "NOT_APPLICABLE"
ALLOCATION_FAILED = "FAILED"

REASON_OK = "OK"
REASON_NOT_FOUND = "NOT_FOUND"
REASON_INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
REASON_INVALID = "INVALID_REQUEST"
REASON_TIMEOUT = "TIMEOUT"
REASON_STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


@dataclass
class AllocationResult:
    """
    Outcome of allocate_monthly_credits.

    user is None only when status is FAILED; callers treat that as
    "no allocation this time" and try again on the next request.
    """
    status: str
    user: User | None
    plan_tier: str | None = None
    amount: int = 0
    error: str | None = None

    @property
    def granted(self) -> bool:
        return self.status == ALLOCATION_GRANTED


@dataclass
class SettlementResult:
    success: bool
    user: User | None = None
    error: str | None = None
    reason: str = REASON_OK

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "user": self.user.to_dict() if self.user else None}
        return {"success": False, "error": self.error, "reason": self.reason}


# =============================================================================
# MONTHLY ALLOCATION
# =============================================================================

def _already_allocated(purchase: CreditTransaction | None, plan_tier: str, now: datetime) -> bool:
    if purchase is None:
        return False
    return allocation_period(purchase.created_at) == allocation_period(now) and purchase.package_id == plan_tier


def _allocation_exists(user_id: int, plan_tier: str, period: str) -> bool:
    return db.session.query(CreditTransaction.id).filter_by(
        user_id=user_id,
        package_id=plan_tier,
        allocation_period=period,
    ).first() is not None


def _gate_closed(user_id: int, latest: CreditTransaction | None, plan_tier: str, now: datetime) -> bool:
    # Latest row covers the common case; the period lookup mirrors the unique key
    if _already_allocated(latest, plan_tier, now):
        return True
    return _allocation_exists(user_id, plan_tier, allocation_period(now))


def allocate_monthly_credits(
    user: User | None,
    plan_tier: str | None,
    latest_purchase: CreditTransaction | None = None,
    now: datetime | None = None,
) -> AllocationResult:
    """
    Grant the plan tier's monthly quota to a patient, at most once per month per tier.

    Args:
        user: Reconciled user
        plan_tier: Resolved tier (see plan_service.resolve_plan_tier); None = no active plan
        latest_purchase: Newest CREDIT_PURCHASE this month if the caller already has it
        now: Clock override (defaults to utcnow)

    Returns:
        AllocationResult. The gate is checked once against latest_purchase and
        again inside the transaction with the user row locked; the
        (user, package, period) unique constraint backs both checks.
    """
    if user is None:
        return AllocationResult(status=ALLOCATION_NOT_APPLICABLE, user=None)
    if user.role != ROLE_PATIENT or plan_tier is None:
        return AllocationResult(status=ALLOCATION_NOT_APPLICABLE, user=user, plan_tier=plan_tier)

    now = now or utcnow()
    user_id = user.id
    period = allocation_period(now)

    try:
        quota = quota_for(plan_tier)

        if latest_purchase is None:
            latest_purchase = latest_monthly_purchase(user_id, now)
        if _gate_closed(user_id, latest_purchase, plan_tier, now):
            return AllocationResult(status=ALLOCATION_ALREADY_ALLOCATED, user=user, plan_tier=plan_tier)

        skipped = False
        try:
            with bounded_transaction():
                locked = lock_for_update(
                    db.session.query(User).filter_by(id=user_id)
                ).populate_existing().first()
                if not locked:
                    raise UserNotFoundError(f"User {user_id} not found")

                if _gate_closed(user_id, latest_monthly_purchase(user_id, now), plan_tier, now):
                    skipped = True
                else:
                    db.session.add(CreditTransaction(
                        user_id=user_id,
                        transaction_type=TRANSACTION_CREDIT_PURCHASE,
                        amount=quota,
                        package_id=plan_tier,
                        allocation_period=period,
                        created_at=now,
                    ))
                    db.session.flush()
                    db.session.execute(
                        update(User)
                        .where(User.id == user_id)
                        .values(credits=User.credits + quota, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
        except IntegrityError:
            # A concurrent request committed this tier's allocation first
            if not _allocation_exists(user_id, plan_tier, period):
                raise
            skipped = True

        refreshed = db.session.get(User, user_id)
        if skipped:
            return AllocationResult(status=ALLOCATION_ALREADY_ALLOCATED, user=refreshed, plan_tier=plan_tier)

        current_app.logger.info(
            "Allocated %s credits to user %s for plan %s (%s)", quota, user_id, plan_tier, period
        )
        notify_credits_allocated(user_id, quota, plan_tier)
        return AllocationResult(status=ALLOCATION_GRANTED, user=refreshed, plan_tier=plan_tier, amount=quota)

    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Error in monthly credit allocation (user_id=%s, plan=%s, period=%s)", user_id, plan_tier, period
        )
        return AllocationResult(status=ALLOCATION_FAILED, user=None, plan_tier=plan_tier, error=str(exc))


def allocate_for_entitlements(
    user: User | None,
    has_plan: Callable[[str], bool],
    latest_purchase: CreditTransaction | None = None,
    now: datetime | None = None,
) -> AllocationResult:
    """Resolve the effective plan tier from an entitlement check, then allocate."""
    if user is None or user.role != ROLE_PATIENT:
        return AllocationResult(status=ALLOCATION_NOT_APPLICABLE, user=user)
    return allocate_monthly_credits(user, resolve_plan_tier(has_plan), latest_purchase=latest_purchase, now=now)


# =============================================================================
# APPOINTMENT SETTLEMENT
# =============================================================================

def _failure(error: str, reason: str) -> SettlementResult:
    return SettlementResult(success=False, error=error, reason=reason)


def charge_appointment(patient_id: int, doctor_id: int, now: datetime | None = None) -> SettlementResult:
    """
    Transfer APPOINTMENT_CREDIT_COST credits from patient to doctor.

    All-or-nothing: two APPOINTMENT_DEDUCTION ledger rows (-fee patient,
    +fee doctor), patient decrement and doctor increment commit together.

    The balance check is repeated as a conditional UPDATE (credits >= fee)
    inside the transaction, so concurrent bookings against the same stale
    balance cannot overdraw the patient.

    Never raises; every failure becomes a SettlementResult with success=False.
    """
    fee = APPOINTMENT_CREDIT_COST
    now = now or utcnow()

    try:
        if patient_id == doctor_id:
            return _failure("Patient and doctor must be different users", REASON_INVALID)

        with bounded_transaction():
            # Lock both rows in id order so opposite transfers cannot deadlock
            rows = lock_for_update(
                db.session.query(User).filter(User.id.in_([patient_id, doctor_id])).order_by(User.id)
            ).populate_existing().all()
            by_id = {u.id: u for u in rows}

            patient = by_id.get(patient_id)
            if not patient:
                raise UserNotFoundError("Patient not found")
            if doctor_id not in by_id:
                raise UserNotFoundError("Doctor not found")

            if patient.credits < fee:
                raise InsufficientCreditsError("Insufficient credits to book an appointment")

            debit = db.session.execute(
                update(User)
                .where(User.id == patient_id, User.credits >= fee)
                .values(credits=User.credits - fee, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if debit.rowcount != 1:
                raise InsufficientCreditsError("Insufficient credits to book an appointment")

            db.session.execute(
                update(User)
                .where(User.id == doctor_id)
                .values(credits=User.credits + fee, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            db.session.add_all([
                CreditTransaction(
                    user_id=patient_id,
                    transaction_type=TRANSACTION_APPOINTMENT_DEDUCTION,
                    amount=-fee,
                    counterparty_user_id=doctor_id,
                    created_at=now,
                ),
                CreditTransaction(
                    user_id=doctor_id,
                    transaction_type=TRANSACTION_APPOINTMENT_DEDUCTION,
                    amount=fee,
                    counterparty_user_id=patient_id,
                    created_at=now,
                ),
            ])

        patient = db.session.get(User, patient_id)
        current_app.logger.info(
            "Charged %s credits from patient %s to doctor %s (balance now %s)",
            fee, patient_id, doctor_id, patient.credits,
        )
        return SettlementResult(success=True, user=patient)

    except UserNotFoundError as e:
        return _failure(str(e), REASON_NOT_FOUND)
    except InsufficientCreditsError as e:
        return _failure(str(e), REASON_INSUFFICIENT_BALANCE)
    except TransactionTimeoutError as e:
        current_app.logger.exception(
            "Failed to deduct credits (patient_id=%s, doctor_id=%s)", patient_id, doctor_id
        )
        return _failure(str(e), REASON_TIMEOUT)
    except StoreUnavailableError as e:
        current_app.logger.exception(
            "Failed to deduct credits (patient_id=%s, doctor_id=%s)", patient_id, doctor_id
        )
        return _failure(f"Credit store unavailable: {e}", REASON_STORE_UNAVAILABLE)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to deduct credits (patient_id=%s, doctor_id=%s)", patient_id, doctor_id
        )
        return _failure(f"Failed to deduct credits: {e}", REASON_STORE_UNAVAILABLE)
