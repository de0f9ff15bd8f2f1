"""
Role → {resource → {actions}} registry.

The database (roles / permissions / role_permissions) is the source of truth.
A role's grant set is only ever replaced as a unit: every grant for the role is
deleted and the new set bulk-inserted inside one transaction, and the role's
``permissions_version`` is bumped. The in-process cache keeps one immutable
entry per role keyed by that version and swaps entries whole, so a request
never observes a half-updated grant set.
"""
import logging
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from sqlalchemy.orm import Session

from manuflow.core.errors import ValidationError
from manuflow.core.permissions import (
    SUPER_ADMIN_ROLE,
    PermissionSet,
    group_pairs,
    parse_grants,
    parse_pair,
    to_wire,
)
from manuflow.models.role import Permission, Role, RolePermission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleGrants:
    role_id: uuid.UUID
    role: str
    version: int
    permissions: PermissionSet


def _freeze(grouped: Mapping) -> PermissionSet:
    return MappingProxyType(dict(grouped))


def load_role_permissions(db: Session, role_id: uuid.UUID) -> PermissionSet:
    rows = (
        db.query(Permission.resource, Permission.action)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id == role_id)
        .all()
    )
    pairs = []
    for resource, action in rows:
        try:
            pairs.append(parse_pair(resource, action))
        except ValidationError:
            logger.warning("Ignoring unknown permission '%s:%s' on role %s", resource, action, role_id)
    return _freeze(group_pairs(pairs))


class PermissionRegistry:
    def __init__(self) -> None:
        self._entries: dict[uuid.UUID, RoleGrants] = {}
        self._lock = threading.Lock()

    def grants_for(self, db: Session, role: Role) -> RoleGrants:
        """Return the cached grants for ``role``, reloading when its version moved."""
        entry = self._entries.get(role.id)
        if entry is not None and entry.version == role.permissions_version:
            return entry

        entry = RoleGrants(
            role_id=role.id,
            role=role.name,
            version=role.permissions_version,
            permissions=load_role_permissions(db, role.id),
        )
        self._install(entry)
        return entry

    def snapshot(self, db: Session) -> dict[str, dict[str, list[str]]]:
        """All roles with their grants, as {role: {resource: [actions]}}."""
        roles = db.query(Role).order_by(Role.name).all()
        return {role.name: to_wire(self.grants_for(db, role).permissions) for role in roles}

    def replace(
        self,
        db: Session,
        role_name: str,
        grants: Mapping[str, Iterable[str]],
    ) -> RoleGrants:
        """Replace every grant of ``role_name`` with ``grants`` in one transaction."""
        pairs = parse_grants(grants)
        if role_name == SUPER_ADMIN_ROLE:
            raise ValidationError(f"The {SUPER_ADMIN_ROLE} role implicitly holds every permission")

        # Serializes concurrent replaces of the same role
        role = (
            db.query(Role)
            .filter(Role.name == role_name)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not role:
            db.rollback()
            raise ValidationError("Invalid role")

        try:
            catalog = {
                (p.resource, p.action): p
                for p in db.query(Permission).all()
            }
            db.query(RolePermission).filter(RolePermission.role_id == role.id).delete(
                synchronize_session="fetch"
            )
            db.expire(role, ["grants"])
            for resource, action in sorted(pairs):
                permission = catalog.get((resource.value, action.value))
                if permission is None:
                    permission = Permission(
                        resource=resource.value,
                        action=action.value,
                        description=f"{action.value.capitalize()} {resource.value}",
                    )
                    db.add(permission)
                    db.flush()
                db.add(RolePermission(role_id=role.id, permission_id=permission.id))
            role.permissions_version = Role.permissions_version + 1
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Replacing permissions for role '%s' failed, rolled back", role_name)
            raise

        db.refresh(role)
        entry = RoleGrants(
            role_id=role.id,
            role=role.name,
            version=role.permissions_version,
            permissions=_freeze(group_pairs(pairs)),
        )
        self._install(entry)
        logger.info(
            "Permissions for role '%s' replaced (%d grants, version %d)",
            role.name, len(pairs), role.permissions_version,
        )
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def _install(self, entry: RoleGrants) -> None:
        with self._lock:
            current = self._entries.get(entry.role_id)
            if current is not None and current.version > entry.version:
                return
            entries = dict(self._entries)
            entries[entry.role_id] = entry
            self._entries = entries


registry = PermissionRegistry()
