# Overview: Service-layer operations for authorization; encapsulates business logic and database work.

"""
Authorization Engine and Security Event Logging

WHY: Every privileged mutation (credit adjustment, QR issuance, role
management) is gated by a (resource, action) check against the user's
AccessRole.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Orphans get nothing: an elevated base tag without an AccessRole is
  denied every pair, never treated as implicit admin
- authorize() is a pure read; require_access() is the auditing wrapper
- Log denials only: grants are not logged
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import AccessRole, BaseRole, Permission, SecurityEvent, User
from ..permissions import validate_action, validate_resource
from ..time_utils import utcnow


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    Pass commit=False to write the event inside the caller's transaction
    (administrative actions record their audit row atomically with the
    change itself).

    event_type examples:
    - PERMISSION_DENIED
    - ROLE_DELETED
    - ORPHAN_LINKED
    - QR_WIPE
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return event


def _validate_pair(resource: str, action: str) -> None:
    if not resource or not action:
        raise InvalidInputError("resource and action are required")
    if not validate_resource(resource):
        raise InvalidInputError(f"Unknown resource '{resource}'", {"resource": resource})
    if not validate_action(action):
        raise InvalidInputError(f"Unknown action '{action}'", {"action": action})


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


def authorize(user_id: int, resource: str, action: str) -> AccessDecision:
    """
    Resolve (user, resource, action) to allow or deny.

    Deny is a normal outcome, not an error. Raises NotFoundError only when
    the user does not exist, InvalidInputError for identifiers outside the
    vocabulary.
    """
    _validate_pair(resource, action)
    user = _get_user(user_id)

    if not user.is_active:
        return AccessDecision(False, "User is inactive")

    # Deny-by-default: base_role never substitutes for a concrete role
    if user.access_role_id is None:
        return AccessDecision(False, "No access role assigned")

    permission = (
        db.session.query(Permission)
        .filter_by(role_id=user.access_role_id, resource=resource)
        .first()
    )
    if permission is None or not permission.allows(action):
        return AccessDecision(False, f"Missing {action} permission on {resource}")

    return AccessDecision(True)


def require_access(user_id: int, resource: str, action: str, *, context: str | None = None) -> None:
    """
    Require user to be allowed, raise ForbiddenError if not.

    Denials are written to security_events and the app log. context (e.g.
    "activate SR000001") is appended to the recorded reason.

    Usage:
        require_access(actor_id, "qrs", "create")
    """
    decision = authorize(user_id, resource, action)
    if decision.allowed:
        return

    current_app.logger.warning(
        "Access denied: user=%s resource=%s action=%s reason=%s",
        user_id, resource, action, decision.reason,
    )
    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason=f"{decision.reason} ({context})" if context else decision.reason,
    )
    raise ForbiddenError(
        decision.reason or "Permission denied",
        {"resource": resource, "action": action},
    )


def get_effective_permissions(user_id: int) -> dict[str, set[str]]:
    """
    Get all granted actions per resource for a user.

    Returns {} for orphans, role-less and inactive users.
    """
    user = _get_user(user_id)
    if not user.is_active or user.access_role_id is None:
        return {}

    grants: dict[str, set[str]] = {}
    permissions = db.session.query(Permission).filter_by(role_id=user.access_role_id).all()
    for permission in permissions:
        actions = set(permission.action_set)
        if actions:
            grants[permission.resource] = actions
    return grants


def list_orphans() -> list[User]:
    """Users carrying the elevated base tag without an AccessRole."""
    return (
        db.session.query(User)
        .filter(
            User.base_role.in_(BaseRole.ELEVATED),
            User.access_role_id.is_(None),
        )
        .order_by(User.id)
        .all()
    )


def get_user_role_name(user_id: int) -> str | None:
    user = _get_user(user_id)
    if user.access_role_id is None:
        return None
    role = db.session.get(AccessRole, user.access_role_id)
    return role.name if role else None
