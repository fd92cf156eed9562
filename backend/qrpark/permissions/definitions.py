# Overview: Fixed vocabulary of resources/actions and the seeded system roles.
# Each system role is defined as: (name, description, {resource: actions})

from .categories import Resource, Action


RESOURCES = (
    Resource.USERS,
    Resource.QRS,
    Resource.SETTINGS,
    Resource.ROLES,
    Resource.FINANCIALS,
    Resource.CUSTOMERS,
    Resource.SUBSCRIPTIONS,
)

ACTIONS = (
    Action.VIEW,
    Action.CREATE,
    Action.EDIT,
    Action.DELETE,
)

ALL_ACTIONS = frozenset(ACTIONS)


# -- SYSTEM ROLES --

SUPER_ADMIN_ROLE = "Super Admin"
DISTRIBUTOR_ROLE = "Standard Distributor"
RETAILER_ROLE = "Standard Retailer"

SYSTEM_ROLE_DEFINITIONS = [
    (
        SUPER_ADMIN_ROLE,
        "Full access to all resources",
        {resource: set(ACTIONS) for resource in RESOURCES},
    ),
    (
        DISTRIBUTOR_ROLE,
        "Can manage retailers and sales",
        {
            Resource.USERS: {Action.VIEW, Action.CREATE, Action.EDIT},
            Resource.FINANCIALS: {Action.VIEW, Action.CREATE},
        },
    ),
    (
        RETAILER_ROLE,
        "Can activate QRs",
        {
            Resource.QRS: {Action.VIEW, Action.EDIT},
        },
    ),
]
