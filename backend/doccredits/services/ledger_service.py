# Overview: Service-layer read operations for the credit ledger; history and balance audits.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import User, CreditTransaction
"""
Credit Ledger Invariants (authoritative)

- credit_transactions is append-only: no updates, no deletes.
- User.credits is a cached projection: it equals SUM(amount) of the user's rows.
- Ledger writes happen only in identity_service and credit_service, inside the
  same transaction as the balance change they justify.
- Corrections are new offsetting rows.
"""


@dataclass
class BalanceDrift:
    user_id: int
    cached_credits: int
    ledger_credits: int

    @property
    def difference(self) -> int:
        return self.cached_credits - self.ledger_credits


def get_user_transactions(
    user_id: int,
    *,
    limit: int = 50,
    before_id: int | None = None,
    transaction_type: str | None = None,
) -> list[CreditTransaction]:
    """
    Newest-first ledger rows for a user.

    Pagination is keyset on id: pass the last id of the previous page as before_id.
    """
    q = db.session.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
    if transaction_type:
        q = q.filter(CreditTransaction.transaction_type == transaction_type)
    if before_id is not None:
        q = q.filter(CreditTransaction.id < before_id)
    return q.order_by(CreditTransaction.id.desc()).limit(limit).all()


def ledger_balance(user_id: int, as_of: datetime | None = None) -> int:
    """Sum of the user's ledger rows. as_of filtering is inclusive: created_at <= as_of."""
    q = db.session.query(func.coalesce(func.sum(CreditTransaction.amount), 0)).filter(
        CreditTransaction.user_id == user_id
    )
    if as_of is not None:
        q = q.filter(CreditTransaction.created_at <= as_of)
    return int(q.scalar())


def total_credits() -> int:
    """Sum of all cached balances. Settlement keeps this constant."""
    return int(db.session.query(func.coalesce(func.sum(User.credits), 0)).scalar())


def find_balance_drift() -> list[BalanceDrift]:
    """
    Users whose cached balance differs from their ledger sum.

    An empty list means the projection is consistent.
    """
    ledger_sums = (
        db.session.query(
            CreditTransaction.user_id.label("user_id"),
            func.sum(CreditTransaction.amount).label("total"),
        )
        .group_by(CreditTransaction.user_id)
        .subquery()
    )
    rows = (
        db.session.query(User.id, User.credits, func.coalesce(ledger_sums.c.total, 0))
        .outerjoin(ledger_sums, ledger_sums.c.user_id == User.id)
        .filter(User.credits != func.coalesce(ledger_sums.c.total, 0))
        .order_by(User.id)
        .all()
    )
    return [BalanceDrift(user_id=uid, cached_credits=cached, ledger_credits=int(total)) for uid, cached, total in rows]
