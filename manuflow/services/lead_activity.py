"""
Writes lead activity rows (the append-only audit trail of lead changes).
"""
import uuid
from typing import Any

from sqlalchemy.orm import Session

from manuflow.models.lead_activity import LeadActivity


def add_lead_activity(
    db: Session,
    lead_id: uuid.UUID,
    user_id: uuid.UUID,
    activity_type: str,
    description: str | None = None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> LeadActivity:
    """Stage an activity row in the caller's transaction; the caller commits."""
    activity = LeadActivity(
        lead_id=lead_id,
        user_id=user_id,
        activity_type=activity_type,
        description=description,
        previous_value=previous_value,
        new_value=new_value,
    )
    db.add(activity)
    return activity
