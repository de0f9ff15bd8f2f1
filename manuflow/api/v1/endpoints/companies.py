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
from manuflow.schemas.company import (
    CompanyCreate,
    CompanyDetailResponse,
    CompanyListResponse,
    CompanyResponse,
    CompanyUpdate,
)
from manuflow.schemas.customer import CustomerListResponse
from manuflow.schemas.deletion import DeletionResponse
from manuflow.services.authorization import Actor, authorize
from manuflow.services.deletion import delete_entity
from manuflow.services.deletion_planner import COMPANY, get_active

logger = logging.getLogger(__name__)
router = APIRouter()


def _company_to_dict(company: Company) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "industry": company.industry,
        "location": company.location,
        "created_by": company.created_by,
        "created_at": company.created_at,
        "updated_at": company.updated_at,
    }


def _active_customers(db: Session, company_id: uuid.UUID):
    return db.query(Customer).filter(
        Customer.company_id == company_id, Customer.deleted_at.is_(None)
    )


@router.get(
    "/companies",
    response_model=CompanyListResponse,
    summary="List companies",
)
def list_companies(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.COMPANIES, Action.READ)),
) -> dict:
    query = db.query(Company).filter(Company.deleted_at.is_(None))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Company.name.ilike(pattern),
            Company.industry.ilike(pattern),
            Company.location.ilike(pattern),
        ))
    # Non-admins only see their own companies
    if not actor.is_super_admin:
        query = query.filter(Company.created_by == actor.id)

    total = query.count()
    companies = (
        query.order_by(Company.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "items": [_company_to_dict(c) for c in companies],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get(
    "/companies/{company_id}",
    response_model=CompanyDetailResponse,
    summary="Get company details with its customers",
)
def get_company(
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    company = get_active(db, COMPANY, company_id)
    authorize(actor, Resource.COMPANIES, Action.READ, company.created_by)

    customers = _active_customers(db, company_id).order_by(Customer.created_at.desc()).all()
    return {
        **_company_to_dict(company),
        "customers": [{"id": c.id, "name": c.name, "email": c.email} for c in customers],
    }


@router.post(
    "/companies",
    response_model=CompanyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a company",
)
def create_company(
    body: CompanyCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.COMPANIES, Action.CREATE)),
) -> dict:
    company = Company(
        name=body.name,
        industry=body.industry,
        location=body.location,
        created_by=actor.id,
    )
    db.add(company)
    db.commit()
    db.refresh(company)

    logger.info("Company '%s' created by %s", company.name, actor.id)
    return _company_to_dict(company)


@router.put(
    "/companies/{company_id}",
    response_model=CompanyResponse,
    summary="Update a company",
)
def update_company(
    company_id: uuid.UUID,
    body: CompanyUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    company = get_active(db, COMPANY, company_id)
    authorize(actor, Resource.COMPANIES, Action.UPDATE, company.created_by)

    if body.name is not None:
        company.name = body.name
    if body.industry is not None:
        company.industry = body.industry
    if body.location is not None:
        company.location = body.location

    db.commit()
    db.refresh(company)
    return _company_to_dict(company)


@router.delete(
    "/companies/{company_id}",
    response_model=DeletionResponse,
    summary="Delete a company",
)
def delete_company(
    company_id: uuid.UUID,
    force: bool = Query(False),
    reassign_to: str | None = Query(None, alias="reassignToCompanyId"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    """
    Soft-delete a company.

    With active customers the request is refused unless ``force=true``:
    ``force=true&reassignToCompanyId=<id>`` moves the customers to another
    company first, plain ``force=true`` deletes the customers and their leads too.
    """
    result = delete_entity(db, actor, COMPANY, company_id, force=force, reassign_to=reassign_to)
    return {"detail": "Company deleted successfully", **result.to_dict()}


@router.get(
    "/companies/{company_id}/customers",
    response_model=CustomerListResponse,
    summary="List the customers of a company",
)
def list_company_customers(
    company_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    company = get_active(db, COMPANY, company_id)
    authorize(actor, Resource.COMPANIES, Action.READ, company.created_by)

    query = _active_customers(db, company_id)
    total = query.count()
    customers = (
        query.order_by(Customer.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    company_info = {"id": company.id, "name": company.name, "industry": company.industry}

    return {
        "items": [
            {
                "id": c.id,
                "name": c.name,
                "email": c.email,
                "phone": c.phone,
                "company_id": c.company_id,
                "company": company_info,
                "created_by": c.created_by,
                "created_at": c.created_at,
                "updated_at": c.updated_at,
            }
            for c in customers
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
