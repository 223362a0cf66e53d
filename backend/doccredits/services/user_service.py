# Overview: Service-layer operations for users; lookups and role assignment.

from __future__ import annotations

from ..extensions import db
from ..models import User
from ..models.users import VALID_ROLES


class UserError(Exception):
    """Raised for user operation errors."""
    pass


def get_user(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def list_users(role: str | None = None) -> list[User]:
    q = db.session.query(User)
    if role:
        q = q.filter_by(role=role)
    return q.order_by(User.id).all()


def set_role(external_id: str, role: str) -> User:
    """
    Assign a role to a reconciled user.

    Only PATIENT users receive monthly allocations; a freshly reconciled
    user is UNASSIGNED until onboarding sets a role.
    """
    role = role.upper()
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")

    user = db.session.query(User).filter_by(external_id=external_id).first()
    if not user:
        raise UserError(f"User with external_id {external_id} not found")

    user.role = role
    db.session.commit()
    return user
