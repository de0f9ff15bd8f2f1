import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from manuflow.core.auth import get_current_actor, require_permission
from manuflow.core.database import get_db
from manuflow.core.permissions import Action, Resource
from manuflow.models.customer import Customer
from manuflow.models.lead import Lead
from manuflow.models.lead_activity import LeadActivity
from manuflow.schemas.deletion import DeletionResponse
from manuflow.schemas.lead import (
    LeadCreate,
    LeadDetailResponse,
    LeadListResponse,
    LeadResponse,
    LeadUpdate,
)
from manuflow.services.authorization import Actor, authorize
from manuflow.services.deletion import delete_entity
from manuflow.services.deletion_planner import CUSTOMER, LEAD, get_active
from manuflow.services.lead_activity import add_lead_activity

logger = logging.getLogger(__name__)
router = APIRouter()

UPDATABLE_FIELDS = (
    "deal_name", "amount", "product", "stage", "date", "customer_id",
    "attained_through", "document_url", "notes",
)
CLEARABLE_FIELDS = ("attained_through", "document_url", "notes")


def _lead_to_dict(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "deal_name": lead.deal_name,
        "amount": lead.amount,
        "product": lead.product,
        "stage": lead.stage,
        "date": lead.date,
        "customer_id": lead.customer_id,
        "created_by": lead.created_by,
        "attained_through": lead.attained_through,
        "document_url": lead.document_url,
        "notes": lead.notes,
        "created_at": lead.created_at,
        "updated_at": lead.updated_at,
    }


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@router.get(
    "/leads",
    response_model=LeadListResponse,
    summary="List leads",
)
def list_leads(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None),
    stage: str | None = Query(None),
    customer_id: uuid.UUID | None = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.LEADS, Action.READ)),
) -> dict:
    query = db.query(Lead).filter(Lead.deleted_at.is_(None))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Lead.deal_name.ilike(pattern),
            Lead.product.ilike(pattern),
            Lead.notes.ilike(pattern),
        ))
    if stage:
        query = query.filter(Lead.stage == stage)
    if customer_id:
        query = query.filter(Lead.customer_id == customer_id)
    # Non-admins only see their own leads
    if not actor.is_super_admin:
        query = query.filter(Lead.created_by == actor.id)

    total = query.count()
    leads = (
        query.order_by(Lead.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "items": [_lead_to_dict(lead) for lead in leads],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get(
    "/leads/{lead_id}",
    response_model=LeadDetailResponse,
    summary="Get lead details with its activity trail",
)
def get_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    lead = get_active(db, LEAD, lead_id)
    authorize(actor, Resource.LEADS, Action.READ, lead.created_by)

    customer = db.query(Customer.name).filter(Customer.id == lead.customer_id).first()
    activities = (
        db.query(LeadActivity)
        .filter(LeadActivity.lead_id == lead.id, LeadActivity.deleted_at.is_(None))
        .order_by(LeadActivity.created_at.desc())
        .all()
    )

    return {
        **_lead_to_dict(lead),
        "customer_name": customer.name if customer else None,
        "activities": activities,
    }


@router.post(
    "/leads",
    response_model=LeadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a lead",
)
def create_lead(
    body: LeadCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.LEADS, Action.CREATE)),
) -> dict:
    get_active(db, CUSTOMER, body.customer_id)

    lead = Lead(
        deal_name=body.deal_name,
        amount=body.amount,
        product=body.product,
        stage=body.stage,
        date=body.date,
        customer_id=body.customer_id,
        created_by=actor.id,
        attained_through=body.attained_through,
        document_url=body.document_url,
        notes=body.notes,
    )
    db.add(lead)
    db.flush()
    add_lead_activity(
        db,
        lead_id=lead.id,
        user_id=actor.id,
        activity_type="created",
        description="Lead created",
        new_value={"stage": lead.stage},
    )
    db.commit()
    db.refresh(lead)

    logger.info("Lead '%s' created by %s", lead.deal_name, actor.id)
    return _lead_to_dict(lead)


@router.put(
    "/leads/{lead_id}",
    response_model=LeadResponse,
    summary="Update a lead",
)
def update_lead(
    lead_id: uuid.UUID,
    body: LeadUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    lead = get_active(db, LEAD, lead_id)
    authorize(actor, Resource.LEADS, Action.UPDATE, lead.created_by)

    # An explicit null clears the optional fields and is ignored for required ones
    changes = {
        name: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None or name in CLEARABLE_FIELDS
    }
    if "customer_id" in changes:
        get_active(db, CUSTOMER, changes["customer_id"])

    previous: dict[str, Any] = {}
    updated: dict[str, Any] = {}
    for name in UPDATABLE_FIELDS:
        if name not in changes or getattr(lead, name) == changes[name]:
            continue
        previous[name] = _jsonable(getattr(lead, name))
        updated[name] = _jsonable(changes[name])
        setattr(lead, name, changes[name])

    if updated:
        stage_moved = "stage" in updated
        add_lead_activity(
            db,
            lead_id=lead.id,
            user_id=actor.id,
            activity_type="stage_changed" if stage_moved else "updated",
            description=(
                f"Stage changed from {previous['stage']} to {updated['stage']}"
                if stage_moved else "Lead updated"
            ),
            previous_value=previous,
            new_value=updated,
        )

    db.commit()
    db.refresh(lead)
    return _lead_to_dict(lead)


@router.delete(
    "/leads/{lead_id}",
    response_model=DeletionResponse,
    summary="Delete a lead",
)
def delete_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    result = delete_entity(db, actor, LEAD, lead_id)
    return {"detail": "Lead deleted successfully", **result.to_dict()}
