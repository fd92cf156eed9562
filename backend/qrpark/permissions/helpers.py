# Overview: Utility functions for vocabulary lookups and action-set parsing.

from collections.abc import Iterable

from .definitions import RESOURCES, ACTIONS, SYSTEM_ROLE_DEFINITIONS


def validate_resource(resource) -> bool:
    """Check if a resource identifier is in the vocabulary."""
    return resource in RESOURCES


def validate_action(action) -> bool:
    """Check if an action identifier is in the vocabulary."""
    return action in ACTIONS


def parse_actions(actions) -> set[str]:
    """
    Normalize an action set given as "view,edit" or an iterable.

    Whitespace and empty items are dropped. Validation is left to callers.
    """
    if actions is None:
        return set()
    if isinstance(actions, str):
        items: Iterable[str] = actions.split(",")
    else:
        items = actions
    return {str(a).strip().lower() for a in items if a is not None and str(a).strip()}


def serialize_actions(actions: Iterable[str]) -> str:
    """Stable storage form: vocabulary order, comma-separated."""
    chosen = set(actions)
    return ",".join(a for a in ACTIONS if a in chosen)


def get_system_role_names() -> list[str]:
    return [name for name, _desc, _grants in SYSTEM_ROLE_DEFINITIONS]
