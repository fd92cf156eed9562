# Overview: Permission vocabulary package.
# Re-exports all public APIs for convenient imports.

from .categories import Resource, Action
from .definitions import (
    RESOURCES,
    ACTIONS,
    ALL_ACTIONS,
    SUPER_ADMIN_ROLE,
    DISTRIBUTOR_ROLE,
    RETAILER_ROLE,
    SYSTEM_ROLE_DEFINITIONS,
)
from .helpers import (
    validate_resource,
    validate_action,
    parse_actions,
    serialize_actions,
    get_system_role_names,
)

__all__ = [
    "Resource",
    "Action",
    "RESOURCES",
    "ACTIONS",
    "ALL_ACTIONS",
    "SUPER_ADMIN_ROLE",
    "DISTRIBUTOR_ROLE",
    "RETAILER_ROLE",
    "SYSTEM_ROLE_DEFINITIONS",
    "validate_resource",
    "validate_action",
    "parse_actions",
    "serialize_actions",
    "get_system_role_names",
]
