# Overview: Service-layer operations for identity; maps external principals to user records.

"""
Identity Reconciliation Service

WHY: Every authenticated request carries a principal issued by the external
auth provider. The application needs its own User row (role, credit balance)
for that principal, created on first sight.

DESIGN:
- The principal is passed in explicitly; this module never reads request state
- external_id is unique in the database; a concurrent first-time request that
  loses the insert race re-fetches the winner's row instead of failing
- A new user gets a zero-amount free_user CREDIT_PURCHASE marker in the same
  transaction, so it has an allocation record for the current month before any
  real allocation happens
- Any infrastructure failure is logged and reported as None
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, CreditTransaction
from ..models.credits import TRANSACTION_CREDIT_PURCHASE
from ..models.users import ROLE_UNASSIGNED
from doccredits.time_utils import utcnow, month_start, allocation_period
from .concurrency import bounded_transaction
from .plan_service import PLAN_FREE


@dataclass
class AuthPrincipal:
    """Authenticated principal as reported by the external auth provider."""
    external_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    image_url: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class ReconciledIdentity:
    """
    Result of reconcile_identity.

    latest_purchase is the newest CREDIT_PURCHASE row created this calendar
    month (None if there is none). The allocator uses it as a first-pass gate
    so the common "already allocated" case needs no extra query.
    """
    user: User
    latest_purchase: CreditTransaction | None
    created: bool = False


def get_user_by_external_id(external_id: str) -> User | None:
    return db.session.query(User).filter_by(external_id=external_id).first()


def latest_monthly_purchase(user_id: int, now: datetime | None = None) -> CreditTransaction | None:
    """Most recent CREDIT_PURCHASE for the user dated within the current calendar month."""
    return (
        db.session.query(CreditTransaction)
        .filter(
            CreditTransaction.user_id == user_id,
            CreditTransaction.transaction_type == TRANSACTION_CREDIT_PURCHASE,
            CreditTransaction.created_at >= month_start(now),
        )
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .first()
    )


def reconcile_identity(principal: AuthPrincipal | None, now: datetime | None = None) -> ReconciledIdentity | None:
    """
    Find or create the User for an external principal.

    Args:
        principal: Current authenticated principal, or None when signed out
        now: Clock override (defaults to utcnow)

    Returns:
        ReconciledIdentity, or None when there is no principal or the store failed
    """
    if principal is None or not principal.external_id:
        return None

    now = now or utcnow()

    try:
        user = get_user_by_external_id(principal.external_id)
        if user:
            return ReconciledIdentity(user=user, latest_purchase=latest_monthly_purchase(user.id, now))

        try:
            with bounded_transaction():
                user = User(
                    external_id=principal.external_id,
                    name=principal.full_name,
                    email=principal.email or "",
                    image_url=principal.image_url,
                    role=ROLE_UNASSIGNED,
                    credits=0,
                    created_at=now,
                    updated_at=now,
                )
                db.session.add(user)
                db.session.flush()  # Get user ID (and hit the unique constraint early)

                marker = CreditTransaction(
                    user_id=user.id,
                    transaction_type=TRANSACTION_CREDIT_PURCHASE,
                    amount=0,
                    package_id=PLAN_FREE,
                    allocation_period=allocation_period(now),
                    created_at=now,
                )
                db.session.add(marker)
        except IntegrityError:
            # Lost the first-sight race; the other request's row is authoritative
            current_app.logger.info(
                "Duplicate identity for external_id=%s, re-fetching existing user", principal.external_id
            )
            user = get_user_by_external_id(principal.external_id)
            if user is None:
                raise
            return ReconciledIdentity(user=user, latest_purchase=latest_monthly_purchase(user.id, now))

        current_app.logger.info("Created user %s for external_id=%s", user.id, principal.external_id)
        return ReconciledIdentity(user=user, latest_purchase=marker, created=True)

    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Identity reconciliation failed for external_id=%s", principal.external_id
        )
        return None
