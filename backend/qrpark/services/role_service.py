# Overview: Service-layer operations for access roles; encapsulates business logic and database work.

"""
Role Registry

- System roles are seeded by ensure_system_roles() and are immutable here.
- Custom roles are created by administrators and may be deleted.
- Role deletion is one transaction: lock the role, unlink every user
  (access_role_id -> NULL), then delete the role; its permissions
  cascade. Users own the relation, so the role keeps no user list.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import AccessRole, Permission, User
from ..permissions import (
    SYSTEM_ROLE_DEFINITIONS,
    parse_actions,
    serialize_actions,
    validate_action,
    validate_resource,
)
from .authorization_service import log_security_event
from .concurrency import lock_for_update, run_in_transaction


@dataclass(frozen=True)
class RoleDeletionResult:
    role_id: int
    role_name: str
    users_unlinked: int
    permissions_deleted: int

    def to_dict(self) -> dict:
        return {
            "role_id": self.role_id,
            "role_name": self.role_name,
            "users_unlinked": self.users_unlinked,
            "permissions_deleted": self.permissions_deleted,
        }


def _normalize_grants(permissions) -> dict[str, set[str]]:
    """
    Accepts {resource: actions}, [(resource, actions), ...] or
    [{"resource": ..., "actions": ...}, ...] and returns {resource: {actions}}.

    Actions may be a list or a comma-separated string. Resources with an
    empty action set are dropped.
    """
    if permissions is None:
        return {}

    if isinstance(permissions, Mapping):
        pairs = list(permissions.items())
    else:
        pairs = []
        for item in permissions:
            if isinstance(item, Mapping):
                pairs.append((item.get("resource"), item.get("actions")))
            else:
                try:
                    resource, actions = item
                except (TypeError, ValueError):
                    raise InvalidInputError("Each permission must be a (resource, actions) pair")
                pairs.append((resource, actions))

    grants: dict[str, set[str]] = {}
    for resource, actions in pairs:
        resource = (resource or "").strip().lower() if isinstance(resource, str) else resource
        if not resource or not validate_resource(resource):
            raise InvalidInputError(f"Unknown resource '{resource}'", {"resource": resource})
        if resource in grants:
            raise InvalidInputError(f"Duplicate permission for resource '{resource}'", {"resource": resource})

        action_set = parse_actions(actions)
        invalid = sorted(a for a in action_set if not validate_action(a))
        if invalid:
            raise InvalidInputError(
                f"Unknown action(s) for '{resource}': {', '.join(invalid)}",
                {"resource": resource, "actions": invalid},
            )
        if action_set:
            grants[resource] = action_set
    return grants


def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("Role name is required")
    return name.strip()


def _get_role_or_404(role_id: int, lock: bool = False) -> AccessRole:
    query = db.session.query(AccessRole).filter_by(id=role_id)
    if lock:
        query = lock_for_update(query)
    role = query.first()
    if not role:
        raise NotFoundError(f"Role {role_id} not found", {"role_id": role_id})
    return role


def _ensure_mutable(role: AccessRole) -> None:
    if role.is_system:
        raise ForbiddenError(f"System role '{role.name}' cannot be modified", {"role_id": role.id})


def _ensure_name_available(name: str, exclude_role_id: int | None = None) -> None:
    query = db.session.query(AccessRole).filter(db.func.lower(AccessRole.name) == name.lower())
    if exclude_role_id is not None:
        query = query.filter(AccessRole.id != exclude_role_id)
    if query.first():
        raise ConflictError(f"Role '{name}' already exists", {"name": name})


def get_role(role_id: int) -> AccessRole:
    return _get_role_or_404(role_id)


def get_role_by_name(name: str) -> AccessRole | None:
    return db.session.query(AccessRole).filter_by(name=name).first()


def list_roles(include_system: bool = True) -> list[AccessRole]:
    query = db.session.query(AccessRole)
    if not include_system:
        query = query.filter(AccessRole.is_system.is_(False))
    return query.order_by(AccessRole.is_system.desc(), AccessRole.name).all()


def count_role_users(role_id: int) -> int:
    return db.session.query(User).filter_by(access_role_id=role_id).count()


def create_role(
    name: str,
    description: str | None = None,
    permissions=None,
    *,
    is_system: bool = False,
) -> AccessRole:
    """
    Create a role with its permission set.

    permissions: {resource: actions} or a list of pairs/dicts (see
    _normalize_grants). Raises ConflictError on a duplicate name.
    """
    name = _clean_name(name)
    grants = _normalize_grants(permissions)

    def _op() -> AccessRole:
        _ensure_name_available(name)
        role = AccessRole(name=name, description=description, is_system=is_system)
        for resource, actions in sorted(grants.items()):
            role.permissions.append(Permission(resource=resource, actions=serialize_actions(actions)))
        db.session.add(role)
        db.session.flush()
        return role

    role = run_in_transaction("create_role", _op)
    current_app.logger.info("Created role %r (id=%s, system=%s)", role.name, role.id, role.is_system)
    return role


def update_role(
    role_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    permissions=None,
) -> AccessRole:
    """
    Update a custom role. permissions, when given, replaces the whole set.

    System roles: ForbiddenError.
    """
    new_name = _clean_name(name) if name is not None else None
    grants = _normalize_grants(permissions) if permissions is not None else None

    def _op() -> AccessRole:
        role = _get_role_or_404(role_id, lock=True)
        _ensure_mutable(role)

        if new_name is not None and new_name != role.name:
            _ensure_name_available(new_name, exclude_role_id=role.id)
            role.name = new_name
        if description is not None:
            role.description = description

        if grants is not None:
            role.permissions = []
            # Deletes must reach the DB before re-inserting the same (role, resource)
            db.session.flush()
            for resource, actions in sorted(grants.items()):
                role.permissions.append(Permission(resource=resource, actions=serialize_actions(actions)))

        db.session.flush()
        return role

    return run_in_transaction("update_role", _op)


def set_role_permission(role_id: int, resource: str, actions) -> Permission | None:
    """
    Grant (or replace) the action set for one resource on a custom role.

    An empty action set removes the permission and returns None.
    """
    resource = resource.strip().lower() if isinstance(resource, str) else resource
    if not resource or not validate_resource(resource):
        raise InvalidInputError(f"Unknown resource '{resource}'", {"resource": resource})
    grants = _normalize_grants({resource: actions})

    def _op() -> Permission | None:
        role = _get_role_or_404(role_id, lock=True)
        _ensure_mutable(role)

        existing = db.session.query(Permission).filter_by(role_id=role.id, resource=resource).first()
        if resource not in grants:
            if existing:
                db.session.delete(existing)
            return None

        serialized = serialize_actions(grants[resource])
        if existing:
            existing.actions = serialized
            return existing

        permission = Permission(role_id=role.id, resource=resource, actions=serialized)
        db.session.add(permission)
        db.session.flush()
        return permission

    return run_in_transaction("set_role_permission", _op)


def revoke_role_permission(role_id: int, resource: str) -> bool:
    """Remove a resource grant from a custom role. Returns False if it wasn't granted."""
    def _op() -> bool:
        role = _get_role_or_404(role_id, lock=True)
        _ensure_mutable(role)
        deleted = db.session.query(Permission).filter_by(role_id=role.id, resource=resource).delete()
        return bool(deleted)

    return run_in_transaction("revoke_role_permission", _op)


def assign_role(user_id: int, role_id: int | None) -> User:
    """Bind a user to a role, or clear the binding with role_id=None."""
    def _op() -> User:
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        if role_id is not None:
            _get_role_or_404(role_id)
        user.access_role_id = role_id
        return user

    return run_in_transaction("assign_role", _op)


def delete_role(role_id: int, *, actor_user_id: int | None = None) -> RoleDeletionResult:
    """
    Delete a custom role.

    Steps (single transaction, role row locked):
    1. Set access_role_id = NULL on every user referencing the role
    2. Delete the role; its permissions are cascade-deleted

    Raises ForbiddenError for system roles, NotFoundError if absent.
    """
    def _op() -> RoleDeletionResult:
        role = _get_role_or_404(role_id, lock=True)
        if role.is_system:
            raise ForbiddenError(f"Cannot delete system role '{role.name}'", {"role_id": role.id})

        unlinked = db.session.execute(
            update(User)
            .where(User.access_role_id == role.id)
            .values(access_role_id=None)
            .execution_options(synchronize_session="fetch")
        ).rowcount or 0

        result = RoleDeletionResult(
            role_id=role.id,
            role_name=role.name,
            users_unlinked=unlinked,
            permissions_deleted=len(role.permissions),
        )
        db.session.delete(role)
        log_security_event(
            user_id=actor_user_id,
            event_type="ROLE_DELETED",
            success=True,
            resource="roles",
            action="delete",
            reason=f"Deleted role '{result.role_name}', unlinked {unlinked} user(s)",
            commit=False,
        )
        return result

    result = run_in_transaction("delete_role", _op)
    current_app.logger.info(
        "Deleted role %r: %d user(s) unlinked, %d permission(s) removed",
        result.role_name, result.users_unlinked, result.permissions_deleted,
    )
    return result


def delete_custom_roles(*, actor_user_id: int | None = None) -> list[RoleDeletionResult]:
    """
    Delete every non-system role. Each role is its own transaction, so an
    interruption leaves already-deleted roles deleted and the rest intact.
    """
    role_ids: Iterable[int] = [
        rid for (rid,) in db.session.query(AccessRole.id)
        .filter(AccessRole.is_system.is_(False))
        .order_by(AccessRole.id)
        .all()
    ]
    results = []
    for rid in role_ids:
        try:
            results.append(delete_role(rid, actor_user_id=actor_user_id))
        except NotFoundError:
            # Deleted concurrently; nothing left to do for this one
            continue
    return results


def ensure_system_roles() -> int:
    """
    Create the seeded system roles and their default grants.

    Idempotent: existing roles gain any missing default actions and are
    flagged as system; nothing is ever removed. Returns the number of
    roles created.
    """
    def _op() -> int:
        created = 0
        for name, description, defaults in SYSTEM_ROLE_DEFINITIONS:
            role = db.session.query(AccessRole).filter_by(name=name).first()
            if not role:
                role = AccessRole(name=name, description=description, is_system=True)
                db.session.add(role)
                created += 1
            elif not role.is_system:
                current_app.logger.warning(
                    "Promoting custom role %r (id=%s) to system role", role.name, role.id
                )
            role.is_system = True

            by_resource = {p.resource: p for p in role.permissions}
            for resource, actions in defaults.items():
                existing = by_resource.get(resource)
                if existing:
                    existing.actions = serialize_actions(existing.action_set | set(actions))
                else:
                    role.permissions.append(Permission(resource=resource, actions=serialize_actions(actions)))
        return created

    return run_in_transaction("ensure_system_roles", _op)
