"""
Delete protocol shared by the company, customer, lead and user handlers:
authorize first, then resolve a plan, then execute it.
"""
import uuid

from sqlalchemy.orm import Session

from manuflow.core.permissions import Action
from manuflow.services.authorization import Actor, authorize
from manuflow.services.cascade_executor import ExecutionResult, execute_plan
from manuflow.services.deletion_planner import EntityKind, get_active, plan_deletion


def delete_entity(
    db: Session,
    actor: Actor,
    kind: EntityKind,
    entity_id: uuid.UUID,
    force: bool = False,
    reassign_to: str | None = None,
) -> ExecutionResult:
    entity = get_active(db, kind, entity_id)
    authorize(actor, kind.resource, Action.DELETE, entity.created_by)

    plan = plan_deletion(db, kind, entity_id, force=force, reassign_target_id=reassign_to)
    return execute_plan(db, plan)
