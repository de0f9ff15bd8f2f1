"""
Authorization evaluator.

Decides whether an actor may perform an action on a resource instance:

1. ``super_admin`` is always allowed.
2. The owner (creator) of a record always controls it, whatever the role grants.
3. Anyone else needs the (resource, action) grant on their role.

Pure functions: nothing here touches the database.
"""
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from manuflow.core.errors import AuthorizationError
from manuflow.core.permissions import SUPER_ADMIN_ROLE, Action, PermissionSet, Resource


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, snapshotted once per request."""

    id: uuid.UUID
    role: str
    permissions: PermissionSet = field(default_factory=lambda: MappingProxyType({}))
    name: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", _normalize(self.permissions))

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN_ROLE

    def has_permission(self, resource: Resource, action: Action) -> bool:
        return action in self.permissions.get(resource, frozenset())


def _normalize(permissions: Mapping[Resource | str, Iterable[Action | str]]) -> PermissionSet:
    return MappingProxyType({
        Resource(resource): frozenset(Action(action) for action in actions)
        for resource, actions in permissions.items()
    })


def can_act(
    actor: Actor,
    resource: Resource,
    action: Action,
    owner_id: uuid.UUID | None,
) -> bool:
    if actor.is_super_admin:
        return True
    if owner_id is not None and actor.id == owner_id:
        return True
    return actor.has_permission(resource, action)


def authorize(
    actor: Actor,
    resource: Resource,
    action: Action,
    owner_id: uuid.UUID | None,
) -> None:
    """Raise AuthorizationError unless ``can_act`` allows."""
    if not can_act(actor, resource, action, owner_id):
        raise AuthorizationError(
            f"You don't have permission to {action.value} {resource.value}",
            resource=resource.value,
            action=action.value,
        )


def require_grant(actor: Actor, resource: Resource, action: Action) -> None:
    """Route-level check for operations without an owned target (create, list, admin)."""
    if actor.is_super_admin or actor.has_permission(resource, action):
        return
    raise AuthorizationError(
        f"You don't have permission to {action.value} {resource.value}",
        resource=resource.value,
        action=action.value,
    )


def require_super_admin(actor: Actor, what: str) -> None:
    if not actor.is_super_admin:
        raise AuthorizationError(f"You do not have permission to {what}")
