from __future__ import annotations

from ..extensions import db
from doccredits.time_utils import to_utc_z, utcnow


TRANSACTION_CREDIT_PURCHASE = "CREDIT_PURCHASE"
TRANSACTION_APPOINTMENT_DEDUCTION = "APPOINTMENT_DEDUCTION"

VALID_TRANSACTION_TYPES = [TRANSACTION_CREDIT_PURCHASE, TRANSACTION_APPOINTMENT_DEDUCTION]


class CreditTransaction(db.Model):
    """
    Append-only ledger of credit movements.

    TRANSACTION TYPES:
    - CREDIT_PURCHASE: Monthly plan allocation (package_id + allocation_period set)
    - APPOINTMENT_DEDUCTION: One side of an appointment settlement
      (negative for the patient, positive for the doctor)

    IMMUTABLE: Records are never updated or deleted. Corrections are new
    offsetting rows.

    The (user_id, package_id, allocation_period) unique constraint is the
    store-level guarantee that a plan is granted at most once per month.
    NULLs never collide, so settlement rows are unaffected.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "package_id", "allocation_period",
            name="uq_credit_txns_user_package_period",
        ),
        db.Index("ix_credit_txns_user_type_created", "user_id", "transaction_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Integer, nullable=False)  # Positive = credit, negative = debit

    package_id = db.Column(db.String(32), nullable=True)
    allocation_period = db.Column(db.String(7), nullable=True)  # YYYY-MM

    # Settlement rows reference the other party of the transfer
    counterparty_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        backref=db.backref("transactions", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "package_id": self.package_id,
            "allocation_period": self.allocation_period,
            "counterparty_user_id": self.counterparty_user_id,
            "created_at": to_utc_z(self.created_at),
        }
