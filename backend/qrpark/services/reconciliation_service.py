# Overview: Service-layer operations for orphan reconciliation; encapsulates business logic and database work.

"""
Orphan Reconciliation

An orphan is an elevated user (SUPER_ADMIN base tag) with no AccessRole.
The authorization engine denies orphans everything; this batch tries to
give them a concrete role:

1. Best-effort name match: the user's display name up to the first "("
   is matched case-insensitively as a substring of custom role names.
   "Jane (Ops)" -> "Jane" -> matches "Jane Ops Custom".
2. Optional fallback: unmatched users are bound to a zero-permission role
   (created lazily on first need). They stay effectively denied, but are
   no longer orphans.

Each user is committed on its own, so an aborted run leaves every user
either fully linked or untouched. Re-running is a no-op for linked users.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import ConflictError
from ..extensions import db
from ..models import AccessRole, BaseRole, User
from .authorization_service import list_orphans, log_security_event
from .concurrency import lock_for_update, run_in_transaction


LINKED = "LINKED"
FALLBACK = "FALLBACK"
UNMATCHED = "UNMATCHED"
SKIPPED = "SKIPPED"


@dataclass
class UserOutcome:
    user_id: int
    name: str
    outcome: str
    role_id: int | None = None
    role_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "outcome": self.outcome,
            "role_id": self.role_id,
            "role_name": self.role_name,
        }


@dataclass
class ReconciliationResult:
    linked: int = 0
    still_orphaned: int = 0
    fallback_assigned: int = 0
    outcomes: list[UserOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "linked": self.linked,
            "still_orphaned": self.still_orphaned,
            "fallback_assigned": self.fallback_assigned,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def match_key(display_name: str | None) -> str:
    """Text before any parenthetical suffix, stripped."""
    return (display_name or "").split("(")[0].strip()


def find_matching_role(display_name: str | None, exclude_names: set[str] | None = None) -> AccessRole | None:
    """
    First non-system role (by id) whose name contains the match key,
    case-insensitively. Returns None for an empty key.
    """
    key = match_key(display_name).lower()
    if not key:
        return None

    exclude = {n.lower() for n in (exclude_names or set())}
    candidates = (
        db.session.query(AccessRole)
        .filter(AccessRole.is_system.is_(False))
        .order_by(AccessRole.id)
        .all()
    )
    for role in candidates:
        role_name = role.name.lower()
        if role_name in exclude:
            continue
        if key in role_name:
            return role
    return None


def ensure_fallback_role() -> AccessRole:
    """
    Get or lazily create the zero-permission fallback role.

    Idempotent; a concurrent creator winning the unique-name race is fine.
    """
    name = current_app.config["ORPHAN_FALLBACK_ROLE_NAME"]
    role = db.session.query(AccessRole).filter_by(name=name).first()
    if role:
        return role

    def _op() -> AccessRole:
        created = AccessRole(
            name=name,
            description="Default role for staff with no specific permissions",
            is_system=False,
        )
        db.session.add(created)
        db.session.flush()
        return created

    try:
        role = run_in_transaction("ensure_fallback_role", _op)
        current_app.logger.info("Created fallback role %r (id=%s)", role.name, role.id)
        return role
    except ConflictError:
        return db.session.query(AccessRole).filter_by(name=name).one()


def _bind_orphan(user_id: int, role_id: int, outcome: str) -> bool:
    """
    Bind one orphan to a role in its own transaction.

    Re-checks orphan status under lock; returns False if another run
    already linked the user.
    """
    def _op() -> bool:
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user or user.access_role_id is not None or user.base_role not in BaseRole.ELEVATED:
            return False
        user.access_role_id = role_id
        log_security_event(
            user_id=user.id,
            event_type="ORPHAN_LINKED" if outcome == LINKED else "ORPHAN_FALLBACK_ASSIGNED",
            success=True,
            resource="roles",
            action="edit",
            reason=f"Bound to role {role_id}",
            commit=False,
        )
        return True

    return run_in_transaction("reconcile_orphan", _op)


def reconcile_orphans(assign_fallback: bool = False) -> ReconciliationResult:
    """
    Link every orphan to a matching custom role; optionally bind the rest
    to the fallback role.

    Returns counts of linked, fallback-assigned and still-orphaned users.
    """
    result = ReconciliationResult()
    fallback_name = current_app.config["ORPHAN_FALLBACK_ROLE_NAME"]
    orphans = [(u.id, u.name) for u in list_orphans()]

    current_app.logger.info("Reconciling %d orphaned user(s)", len(orphans))

    for user_id, name in orphans:
        role = find_matching_role(name, exclude_names={fallback_name})
        if role:
            if _bind_orphan(user_id, role.id, LINKED):
                result.linked += 1
                result.outcomes.append(UserOutcome(user_id, name, LINKED, role.id, role.name))
                current_app.logger.info("Linked user %s (%s) to role %r", user_id, name, role.name)
            else:
                result.outcomes.append(UserOutcome(user_id, name, SKIPPED))
            continue

        if assign_fallback:
            fallback = ensure_fallback_role()
            if _bind_orphan(user_id, fallback.id, FALLBACK):
                result.fallback_assigned += 1
                result.outcomes.append(UserOutcome(user_id, name, FALLBACK, fallback.id, fallback.name))
                current_app.logger.info("Assigned fallback role to user %s (%s)", user_id, name)
            else:
                result.outcomes.append(UserOutcome(user_id, name, SKIPPED))
            continue

        result.outcomes.append(UserOutcome(user_id, name, UNMATCHED))
        current_app.logger.warning("No matching role for orphaned user %s (%s)", user_id, name)

    result.still_orphaned = len(list_orphans())
    return result
