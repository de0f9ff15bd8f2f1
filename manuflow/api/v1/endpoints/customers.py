import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from manuflow.core.auth import get_current_actor, require_permission
from manuflow.core.database import get_db
from manuflow.core.permissions import Action, Resource
from manuflow.models.company import Company
from manuflow.models.customer import Customer
from manuflow.schemas.customer import (
    CustomerCreate,
    CustomerListResponse,
    CustomerResponse,
    CustomerUpdate,
)
from manuflow.schemas.deletion import DeletionResponse
from manuflow.services.authorization import Actor, authorize
from manuflow.services.deletion import delete_entity
from manuflow.services.deletion_planner import COMPANY, CUSTOMER, get_active

logger = logging.getLogger(__name__)
router = APIRouter()


def _customer_to_dict(customer: Customer, company: Company | None = None) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "company_id": customer.company_id,
        "company": (
            {"id": company.id, "name": company.name, "industry": company.industry}
            if company else None
        ),
        "created_by": customer.created_by,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }


@router.get(
    "/customers",
    response_model=CustomerListResponse,
    summary="List customers",
)
def list_customers(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.CUSTOMERS, Action.READ)),
) -> dict:
    query = (
        db.query(Customer, Company)
        .outerjoin(Company, Customer.company_id == Company.id)
        .filter(Customer.deleted_at.is_(None))
    )
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
            Company.name.ilike(pattern),
        ))
    # Non-admins only see their own customers
    if not actor.is_super_admin:
        query = query.filter(Customer.created_by == actor.id)

    total = query.count()
    rows = (
        query.order_by(Customer.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "items": [_customer_to_dict(customer, company) for customer, company in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get(
    "/customers/{customer_id}",
    response_model=CustomerResponse,
    summary="Get customer details",
)
def get_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    customer = get_active(db, CUSTOMER, customer_id)
    authorize(actor, Resource.CUSTOMERS, Action.READ, customer.created_by)

    company = None
    if customer.company_id:
        company = db.query(Company).filter(Company.id == customer.company_id).first()
    return _customer_to_dict(customer, company)


@router.post(
    "/customers",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer",
)
def create_customer(
    body: CustomerCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.CUSTOMERS, Action.CREATE)),
) -> dict:
    company = None
    if body.company_id:
        company = get_active(db, COMPANY, body.company_id)

    customer = Customer(
        name=body.name,
        email=body.email,
        phone=body.phone,
        company_id=body.company_id,
        created_by=actor.id,
    )
    db.add(customer)
    db.commit()
    db.refresh(customer)

    logger.info("Customer '%s' created by %s", customer.name, actor.id)
    return _customer_to_dict(customer, company)


@router.put(
    "/customers/{customer_id}",
    response_model=CustomerResponse,
    summary="Update a customer",
)
def update_customer(
    customer_id: uuid.UUID,
    body: CustomerUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    customer = get_active(db, CUSTOMER, customer_id)
    authorize(actor, Resource.CUSTOMERS, Action.UPDATE, customer.created_by)

    if body.name is not None:
        customer.name = body.name
    if body.email is not None:
        customer.email = body.email
    if body.phone is not None:
        customer.phone = body.phone
    if body.company_id is not None:
        get_active(db, COMPANY, body.company_id)
        customer.company_id = body.company_id

    db.commit()
    db.refresh(customer)

    company = None
    if customer.company_id:
        company = db.query(Company).filter(Company.id == customer.company_id).first()
    return _customer_to_dict(customer, company)


@router.delete(
    "/customers/{customer_id}",
    response_model=DeletionResponse,
    summary="Delete a customer",
)
def delete_customer(
    customer_id: uuid.UUID,
    force: bool = Query(False),
    reassign_to: str | None = Query(None, alias="reassignToCustomerId"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    """
    Soft-delete a customer.

    With active leads the request is refused unless ``force=true``:
    ``force=true&reassignToCustomerId=<id>`` moves the leads to another
    customer first, plain ``force=true`` deletes the leads too.
    """
    result = delete_entity(db, actor, CUSTOMER, customer_id, force=force, reassign_to=reassign_to)
    return {"detail": "Customer deleted successfully", **result.to_dict()}
