"""
Permission catalog.

Each permission is a (resource, action) pair, written "resource:action" on the
wire. Both halves are closed enumerations: unknown resources or actions are
rejected at the boundary by ``parse_permission``.
"""
import enum
from collections.abc import Iterable, Mapping

from manuflow.core.errors import ValidationError

SUPER_ADMIN_ROLE = "super_admin"


class Resource(str, enum.Enum):
    COMPANIES = "companies"
    CUSTOMERS = "customers"
    LEADS = "leads"
    USERS = "users"
    ROLES = "roles"


class Action(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


# ── All available permissions ──────────────────────────────────────────────
ALL_PERMISSIONS: list[str] = [
    f"{resource.value}:{action.value}" for resource in Resource for action in Action
]

# Grants the seed script installs for the built-in roles
DEFAULT_ROLE_PERMISSIONS: dict[str, dict[str, list[str]]] = {
    "sales": {
        "companies": ["create", "read", "update"],
        "customers": ["create", "read", "update"],
        "leads": ["create", "read", "update", "delete"],
    },
    "telecaller": {
        "customers": ["read"],
        "leads": ["read", "update"],
    },
}

PermissionSet = Mapping[Resource, frozenset[Action]]


def parse_permission(permission: str) -> tuple[Resource, Action]:
    """Parse "resource:action" into its enum pair."""
    resource, sep, action = permission.partition(":")
    if not sep:
        raise ValidationError(f"Invalid permission '{permission}', expected 'resource:action'")
    return parse_pair(resource, action)


def parse_pair(resource: str, action: str) -> tuple[Resource, Action]:
    try:
        return Resource(resource), Action(action)
    except ValueError:
        raise ValidationError(
            f"Invalid permission '{resource}:{action}'. "
            f"Valid permissions: {', '.join(ALL_PERMISSIONS)}"
        )


def parse_grants(grants: Mapping[str, Iterable[str]]) -> set[tuple[Resource, Action]]:
    """
    Validate a {resource: [actions]} mapping as sent by administrators.

    Raises ValidationError naming the first unknown combination.
    """
    pairs: set[tuple[Resource, Action]] = set()
    for resource, actions in grants.items():
        for action in actions:
            pairs.add(parse_pair(resource, action))
    return pairs


def group_pairs(pairs: Iterable[tuple[Resource, Action]]) -> dict[Resource, frozenset[Action]]:
    grouped: dict[Resource, set[Action]] = {}
    for resource, action in pairs:
        grouped.setdefault(resource, set()).add(action)
    return {resource: frozenset(actions) for resource, actions in grouped.items()}


def to_wire(permissions: PermissionSet) -> dict[str, list[str]]:
    """Render a permission set as {resource: [actions]} with stable ordering."""
    return {
        resource.value: [action.value for action in Action if action in permissions[resource]]
        for resource in Resource
        if permissions.get(resource)
    }
