"""
Dependency graph resolver.

Classifies the deletion of a company, customer, lead or user into one of four
plans, driven by a small graph description (parent, child, foreign key):

    Company --company_id--> Customer --customer_id--> Lead

* ``DirectDelete``  no active dependents
* ``Blocked``       dependents exist and ``force`` was not requested
* ``Reassign``      ``force`` plus a valid reassignment target
* ``ForceCascade``  ``force`` without a target; collects every active
                    descendant, level by level

Lead activity rows are attached to their lead and follow it into deletion
(see ``ATTACHED_RECORDS``); they are not dependents and never block.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy.orm import Session

from manuflow.core.config import settings
from manuflow.core.database import Base
from manuflow.core.errors import DeletionBlockedError, NotFoundError, ValidationError
from manuflow.core.permissions import Resource
from manuflow.models.company import Company
from manuflow.models.customer import Customer
from manuflow.models.lead import Lead
from manuflow.models.lead_activity import LeadActivity
from manuflow.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyEdge:
    child: type[Base]
    foreign_key: str
    label: str
    display_fields: tuple[str, ...]


@dataclass(frozen=True)
class EntityKind:
    name: str
    model: type[Base]
    resource: Resource
    edge: DependencyEdge | None = None
    reassign_param: str | None = None

    @property
    def title(self) -> str:
        return self.name.capitalize()


LEAD = EntityKind(name="lead", model=Lead, resource=Resource.LEADS)
CUSTOMER = EntityKind(
    name="customer",
    model=Customer,
    resource=Resource.CUSTOMERS,
    edge=DependencyEdge(
        child=Lead,
        foreign_key="customer_id",
        label="leads",
        display_fields=("deal_name", "stage", "amount"),
    ),
    reassign_param="reassignToCustomerId",
)
COMPANY = EntityKind(
    name="company",
    model=Company,
    resource=Resource.COMPANIES,
    edge=DependencyEdge(
        child=Customer,
        foreign_key="company_id",
        label="customers",
        display_fields=("name", "email"),
    ),
    reassign_param="reassignToCompanyId",
)
USER = EntityKind(name="user", model=User, resource=Resource.USERS)

KINDS_BY_MODEL: dict[type[Base], EntityKind] = {
    kind.model: kind for kind in (COMPANY, CUSTOMER, LEAD, USER)
}

# Records that are soft-deleted together with their owning row: model -> (record, fk)
ATTACHED_RECORDS: dict[type[Base], tuple[type[Base], str]] = {
    Lead: (LeadActivity, "lead_id"),
}


# ── Plans ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DirectDelete:
    kind: EntityKind
    entity_id: uuid.UUID


@dataclass(frozen=True)
class Blocked:
    kind: EntityKind
    entity_id: uuid.UUID
    dependent_count: int
    dependents: list[dict[str, Any]]
    remediation: list[str]

    def to_error(self) -> DeletionBlockedError:
        label = self.kind.edge.label if self.kind.edge else "dependents"
        return DeletionBlockedError(
            f"Cannot delete {self.kind.name} with associated {label}",
            dependent_count=self.dependent_count,
            dependents=self.dependents,
            remediation=self.remediation,
        )


@dataclass(frozen=True)
class Reassign:
    kind: EntityKind
    entity_id: uuid.UUID
    target_id: uuid.UUID
    dependent_count: int


@dataclass(frozen=True)
class CascadeLevel:
    model: type[Base]
    ids: tuple[uuid.UUID, ...]


@dataclass(frozen=True)
class ForceCascade:
    kind: EntityKind
    entity_id: uuid.UUID
    # Descendants, shallowest level first; the entity itself is not included
    levels: tuple[CascadeLevel, ...]

    @property
    def descendant_count(self) -> int:
        return sum(len(level.ids) for level in self.levels)


Plan = Union[DirectDelete, Blocked, Reassign, ForceCascade]


# ── Queries ────────────────────────────────────────────────────────────────

def get_active(
    db: Session,
    kind: EntityKind,
    entity_id: uuid.UUID,
    for_update: bool = False,
) -> Any:
    """Fetch an active (not soft-deleted) row or raise NotFoundError."""
    model = kind.model
    query = db.query(model).filter(model.id == entity_id, model.deleted_at.is_(None))
    if for_update:
        query = query.with_for_update()
    entity = query.first()
    if not entity:
        raise NotFoundError(f"{kind.title} not found")
    return entity


def _active_children(db: Session, edge: DependencyEdge, parent_ids: list[uuid.UUID]):
    child = edge.child
    return db.query(child).filter(
        getattr(child, edge.foreign_key).in_(parent_ids),
        child.deleted_at.is_(None),
    )


def _display(entity: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    data: dict[str, Any] = {"id": str(entity.id)}
    for name in fields:
        value = getattr(entity, name)
        data[name] = value if value is None or isinstance(value, (str, int, float)) else str(value)
    return data


def remediation_hints(kind: EntityKind) -> list[str]:
    label = kind.edge.label if kind.edge else "dependents"
    return [
        f"force=true: delete this {kind.name} together with all its active {label}"
        + (" and everything that depends on them" if _depth(kind) > 1 else ""),
        f"force=true&{kind.reassign_param}=<id>: move all active {label} "
        f"to another {kind.name}, then delete this one",
    ]


def _depth(kind: EntityKind) -> int:
    depth = 0
    while kind.edge is not None:
        depth += 1
        child_kind = KINDS_BY_MODEL.get(kind.edge.child)
        if child_kind is None:
            break
        kind = child_kind
    return depth


def parse_reassign_target(raw: uuid.UUID | str | None, kind: EntityKind) -> uuid.UUID | None:
    """Parse the ``reassignTo<Type>Id`` query value."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise ValidationError(f"Malformed {kind.reassign_param}: '{raw}'")


# ── Resolver ───────────────────────────────────────────────────────────────

def plan_deletion(
    db: Session,
    kind: EntityKind,
    entity_id: uuid.UUID,
    force: bool = False,
    reassign_target_id: uuid.UUID | str | None = None,
) -> Plan:
    """
    Classify the deletion of ``entity_id``.

    The root row is locked for the rest of the transaction. The reassignment
    target is only parsed and checked when ``force`` is set and dependents exist.
    """
    get_active(db, kind, entity_id, for_update=True)

    edge = kind.edge
    if edge is None:
        return DirectDelete(kind=kind, entity_id=entity_id)

    children = _active_children(db, edge, [entity_id])
    count = children.count()
    if count == 0:
        return DirectDelete(kind=kind, entity_id=entity_id)

    if not force:
        sample = (
            children.order_by(edge.child.created_at.desc())
            .limit(settings.BLOCKED_SAMPLE_SIZE)
            .all()
        )
        logger.info(
            "Deletion of %s %s blocked by %d active %s",
            kind.name, entity_id, count, edge.label,
        )
        return Blocked(
            kind=kind,
            entity_id=entity_id,
            dependent_count=count,
            dependents=[_display(c, edge.display_fields) for c in sample],
            remediation=remediation_hints(kind),
        )

    target_id = parse_reassign_target(reassign_target_id, kind)
    if target_id is not None:
        _validate_reassign_target(db, kind, entity_id, target_id)
        return Reassign(
            kind=kind,
            entity_id=entity_id,
            target_id=target_id,
            dependent_count=count,
        )

    return ForceCascade(
        kind=kind,
        entity_id=entity_id,
        levels=tuple(_collect_descendants(db, kind, entity_id)),
    )


def _validate_reassign_target(
    db: Session,
    kind: EntityKind,
    entity_id: uuid.UUID,
    target_id: uuid.UUID,
) -> None:
    if target_id == entity_id:
        raise ValidationError(f"Cannot reassign {kind.edge.label} to the {kind.name} being deleted")

    lock_reassign_target(db, kind, target_id)


def lock_reassign_target(db: Session, kind: EntityKind, target_id: uuid.UUID) -> None:
    """Lock the reassignment target row, raising ValidationError unless it is active."""
    model = kind.model
    target = (
        db.query(model.id)
        .filter(model.id == target_id, model.deleted_at.is_(None))
        .with_for_update()
        .first()
    )
    if not target:
        raise ValidationError(
            f"Reassignment target {kind.name} {target_id} does not exist or has been deleted"
        )


def _collect_descendants(
    db: Session,
    kind: EntityKind,
    entity_id: uuid.UUID,
) -> list[CascadeLevel]:
    levels: list[CascadeLevel] = []
    parent_ids = [entity_id]
    current: EntityKind | None = kind
    while current is not None and current.edge is not None and parent_ids:
        edge = current.edge
        ids = tuple(row.id for row in _active_children(db, edge, parent_ids).with_entities(edge.child.id))
        if not ids:
            break
        levels.append(CascadeLevel(model=edge.child, ids=ids))
        parent_ids = list(ids)
        current = KINDS_BY_MODEL.get(edge.child)
    return levels
