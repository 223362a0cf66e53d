from __future__ import annotations

from ..extensions import db
from doccredits.time_utils import to_utc_z, utcnow


ROLE_UNASSIGNED = "UNASSIGNED"
ROLE_PATIENT = "PATIENT"
ROLE_DOCTOR = "DOCTOR"
ROLE_ADMIN = "ADMIN"

VALID_ROLES = [ROLE_UNASSIGNED, ROLE_PATIENT, ROLE_DOCTOR, ROLE_ADMIN]


class User(db.Model):
    """
    Application-side record of an externally authenticated principal.

    IDENTITY: external_id is the stable identifier issued by the auth provider.
    It is unique, so concurrent first-time requests cannot create two rows.

    BALANCE: credits is a cached projection of the credit_transactions ledger.
    Only the credit services write it, always in the same transaction as the
    ledger rows that justify the change.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("external_id", name="uq_users_external_id"),
        db.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        db.Index("ix_users_role", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(255), nullable=False)

    name = db.Column(db.String(255), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False, default="")
    image_url = db.Column(db.String(1024), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_UNASSIGNED)
    credits = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_patient(self) -> bool:
        return self.role == ROLE_PATIENT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "name": self.name,
            "email": self.email,
            "image_url": self.image_url,
            "role": self.role,
            "credits": self.credits,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
