# Overview: Resource and action vocabulary for access-role permissions.


class Resource:
    """Resources a permission can be granted on."""
    USERS = "users"
    QRS = "qrs"
    SETTINGS = "settings"
    ROLES = "roles"
    FINANCIALS = "financials"
    CUSTOMERS = "customers"
    SUBSCRIPTIONS = "subscriptions"


class Action:
    """Actions within a resource."""
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
