import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from manuflow.core.auth import get_current_actor, require_permission
from manuflow.core.database import get_db
from manuflow.core.permissions import ALL_PERMISSIONS, Action, Resource, to_wire
from manuflow.schemas.role import RegistryResponse, RolePermissionsResponse, RolePermissionsUpdate
from manuflow.services.authorization import Actor
from manuflow.services.permission_registry import registry

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/roles/permissions",
    response_model=RegistryResponse,
    summary="Get the permissions of every role",
)
def get_role_permissions(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.ROLES, Action.READ)),
) -> dict:
    return {"permissions": registry.snapshot(db)}


@router.put(
    "/roles/{role}/permissions",
    response_model=RolePermissionsResponse,
    summary="Replace the permissions of a role",
)
def update_role_permissions(
    role: str,
    body: RolePermissionsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.ROLES, Action.UPDATE)),
) -> dict:
    """Replaces the role's whole grant set in one transaction."""
    grants = registry.replace(db, role, body.permissions)
    logger.info("Role '%s' permissions replaced by %s", role, actor.id)
    return {
        "role": grants.role,
        "version": grants.version,
        "permissions": to_wire(grants.permissions),
    }


@router.get(
    "/permissions",
    summary="List all available permissions",
)
def list_permissions(actor: Actor = Depends(get_current_actor)) -> dict:
    """Returns all available permission strings that can be assigned to roles."""
    grouped: dict[str, list[str]] = {}
    for perm in ALL_PERMISSIONS:
        resource, action = perm.split(":")
        grouped.setdefault(resource, []).append(action)

    return {"permissions": ALL_PERMISSIONS, "grouped": grouped}
