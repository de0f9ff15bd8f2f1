"""
Cascade executor.

Carries out a deletion plan as one transaction: every write is flushed through
the caller's session and committed once at the end; any failure rolls the
whole unit back and re-raises the original error.
"""
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from manuflow.core.database import Base
from manuflow.core.errors import NotFoundError
from manuflow.services.deletion_planner import (
    ATTACHED_RECORDS,
    KINDS_BY_MODEL,
    Blocked,
    DirectDelete,
    ForceCascade,
    Plan,
    Reassign,
    lock_reassign_target,
)

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    strategy: str
    entity_id: uuid.UUID
    deleted: int = 0
    reassigned: int = 0
    reassigned_to: uuid.UUID | None = None
    deleted_by_type: dict[str, int] = field(default_factory=dict)
    activities_archived: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "entity_id": self.entity_id,
            "deleted": self.deleted,
            "reassigned": self.reassigned,
            "reassigned_to": self.reassigned_to,
            "deleted_by_type": self.deleted_by_type,
            "activities_archived": self.activities_archived,
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def soft_delete_rows(db: Session, model: type[Base], ids: list[uuid.UUID], now: datetime) -> int:
    """Set deleted_at on the active rows among ``ids``; returns rows changed."""
    if not ids:
        return 0
    return (
        db.query(model)
        .filter(model.id.in_(ids), model.deleted_at.is_(None))
        .update({"deleted_at": now}, synchronize_session=False)
    )


def archive_attached(db: Session, model: type[Base], ids: list[uuid.UUID], now: datetime) -> int:
    """Soft-delete the records attached to rows of ``model`` (e.g. lead activities)."""
    attached = ATTACHED_RECORDS.get(model)
    if attached is None or not ids:
        return 0
    record, foreign_key = attached
    return (
        db.query(record)
        .filter(getattr(record, foreign_key).in_(ids), record.deleted_at.is_(None))
        .update({"deleted_at": now}, synchronize_session=False)
    )


def execute_plan(db: Session, plan: Plan) -> ExecutionResult:
    if isinstance(plan, Blocked):
        # Release the row lock taken while planning
        db.rollback()
        raise plan.to_error()

    now = utcnow()
    try:
        if isinstance(plan, DirectDelete):
            result = _direct_delete(db, plan, now)
        elif isinstance(plan, Reassign):
            result = _reassign(db, plan, now)
        elif isinstance(plan, ForceCascade):
            result = _force_cascade(db, plan, now)
        else:
            raise TypeError(f"Unknown deletion plan: {plan!r}")
        db.commit()
    except Exception:
        db.rollback()
        logger.error(
            "Deletion of %s %s rolled back",
            plan.kind.name, plan.entity_id,
        )
        raise

    logger.info(
        "%s %s deleted (%s): %d removed, %d reassigned",
        plan.kind.title, plan.entity_id, result.strategy, result.deleted, result.reassigned,
    )
    return result


def _delete_root(db: Session, plan: Plan, now: datetime) -> int:
    deleted = soft_delete_rows(db, plan.kind.model, [plan.entity_id], now)
    if deleted != 1:
        # Someone else deleted it after the plan was resolved
        raise NotFoundError(f"{plan.kind.title} not found")
    return deleted


def _direct_delete(db: Session, plan: DirectDelete, now: datetime) -> ExecutionResult:
    deleted = _delete_root(db, plan, now)
    archived = archive_attached(db, plan.kind.model, [plan.entity_id], now)
    return ExecutionResult(
        strategy="direct",
        entity_id=plan.entity_id,
        deleted=deleted,
        deleted_by_type={plan.kind.name: deleted},
        activities_archived=archived,
    )


def _reassign(db: Session, plan: Reassign, now: datetime) -> ExecutionResult:
    # Target may have been deleted since planning
    lock_reassign_target(db, plan.kind, plan.target_id)

    edge = plan.kind.edge
    child = edge.child
    reassigned = (
        db.query(child)
        .filter(
            getattr(child, edge.foreign_key) == plan.entity_id,
            child.deleted_at.is_(None),
        )
        .update({edge.foreign_key: plan.target_id}, synchronize_session=False)
    )
    deleted = _delete_root(db, plan, now)
    logger.info(
        "Moved %d %s from %s %s to %s",
        reassigned, edge.label, plan.kind.name, plan.entity_id, plan.target_id,
    )
    return ExecutionResult(
        strategy="reassign",
        entity_id=plan.entity_id,
        deleted=deleted,
        reassigned=reassigned,
        reassigned_to=plan.target_id,
        deleted_by_type={plan.kind.name: deleted},
    )


def _force_cascade(db: Session, plan: ForceCascade, now: datetime) -> ExecutionResult:
    counts: Counter[str] = Counter()
    archived = 0

    # Deepest level first
    for level in reversed(plan.levels):
        ids = list(level.ids)
        archived += archive_attached(db, level.model, ids, now)
        counts[KINDS_BY_MODEL[level.model].name] += soft_delete_rows(db, level.model, ids, now)

    counts[plan.kind.name] += _delete_root(db, plan, now)
    archived += archive_attached(db, plan.kind.model, [plan.entity_id], now)

    return ExecutionResult(
        strategy="force_cascade",
        entity_id=plan.entity_id,
        deleted=sum(counts.values()),
        deleted_by_type=dict(counts),
        activities_archived=archived,
    )
