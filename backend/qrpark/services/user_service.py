# Overview: Service-layer operations for users; encapsulates business logic and database work.

"""
User records for attribution, access control and credit ownership.

Credentials live in the upstream authentication layer; this service
only manages identity, structural role and AccessRole binding.
"""

from __future__ import annotations

import re

from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import AccessRole, BaseRole, User
from .concurrency import run_in_transaction


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def create_user(
    name: str,
    email: str,
    base_role: str = BaseRole.RETAILER,
    access_role_id: int | None = None,
    parent_id: int | None = None,
) -> User:
    """
    Create new user.

    Email must be unique or ConflictError will be raised.

    Raises:
        InvalidInputError: blank name, malformed email, unknown base role
        NotFoundError: access_role_id or parent_id doesn't exist
        ConflictError: email already registered
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()

    if not name:
        raise InvalidInputError("Name is required")
    if not EMAIL_PATTERN.match(email):
        raise InvalidInputError("A valid email is required", {"email": email})
    if base_role not in BaseRole.ALL:
        raise InvalidInputError(f"Unknown base role '{base_role}'", {"base_role": base_role})

    def _op() -> User:
        if db.session.query(User).filter_by(email=email).first():
            raise ConflictError("Email already exists", {"email": email})

        if access_role_id is not None and not db.session.get(AccessRole, access_role_id):
            raise NotFoundError(f"Role {access_role_id} not found", {"role_id": access_role_id})

        if parent_id is not None and not db.session.get(User, parent_id):
            raise NotFoundError(f"User {parent_id} not found", {"user_id": parent_id})

        user = User(
            name=name,
            email=email,
            base_role=base_role,
            access_role_id=access_role_id,
            parent_id=parent_id,
        )
        db.session.add(user)
        db.session.flush()
        return user

    return run_in_transaction("create_user", _op)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


def get_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=(email or "").strip().lower()).first()


def set_active(user_id: int, is_active: bool) -> User:
    """Deactivated users are denied by the authorization engine."""
    def _op() -> User:
        user = get_user(user_id)
        user.is_active = is_active
        return user

    return run_in_transaction("set_user_active", _op)
