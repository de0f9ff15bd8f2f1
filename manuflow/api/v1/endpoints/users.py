import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from manuflow.core.auth import get_current_actor, hash_password, require_permission
from manuflow.core.database import get_db
from manuflow.core.errors import ValidationError
from manuflow.core.permissions import SUPER_ADMIN_ROLE, Action, Resource, to_wire
from manuflow.models.company import Company
from manuflow.models.customer import Customer
from manuflow.models.lead import Lead
from manuflow.models.role import Role
from manuflow.models.user import User
from manuflow.schemas.deletion import DeletionResponse
from manuflow.schemas.user import (
    UserCreate,
    UserDetailResponse,
    UserListResponse,
    UserResponse,
    UserRoleUpdate,
    UserUpdate,
)
from manuflow.services.authorization import Actor, authorize, require_super_admin
from manuflow.services.deletion import delete_entity
from manuflow.services.deletion_planner import USER, get_active
from manuflow.services.permission_registry import registry

logger = logging.getLogger(__name__)
router = APIRouter()


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.name,
        "phone": user.phone,
        "avatar": user.avatar,
        "created_by": user.created_by,
        "last_login": user.last_login,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def _get_role(db: Session, name: str) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if not role:
        raise ValidationError("Invalid role")
    return role


def _authorize_user_access(actor: Actor, user: User, action: Action) -> None:
    # Users always reach their own account
    if actor.id == user.id:
        return
    authorize(actor, Resource.USERS, action, user.created_by)


@router.get(
    "/users",
    response_model=UserListResponse,
    summary="List users",
)
def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.USERS, Action.READ)),
) -> dict:
    query = db.query(User).filter(User.deleted_at.is_(None))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    # Non-admins only see themselves and the users they created
    if not actor.is_super_admin:
        query = query.filter(or_(User.id == actor.id, User.created_by == actor.id))

    total = query.count()
    users = (
        query.order_by(User.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "items": [user_to_dict(u) for u in users],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get(
    "/users/{user_id}",
    response_model=UserDetailResponse,
    summary="Get user details with role permissions",
)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    user = get_active(db, USER, user_id)
    _authorize_user_access(actor, user, Action.READ)

    grants = registry.grants_for(db, user.role)
    return {**user_to_dict(user), "permissions": to_wire(grants.permissions)}


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
)
def create_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Resource.USERS, Action.CREATE)),
) -> dict:
    existing = db.query(User).filter(User.email == body.email).first()
    if existing:
        raise ValidationError("Email already in use")

    role = _get_role(db, body.role)
    if role.name == SUPER_ADMIN_ROLE:
        require_super_admin(actor, f"create {SUPER_ADMIN_ROLE} users")

    user = User(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        role_id=role.id,
        phone=body.phone,
        created_by=actor.id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User '%s' created with role '%s'", user.email, role.name)
    return user_to_dict(user)


@router.put(
    "/users/{user_id}",
    response_model=UserResponse,
    summary="Update a user",
)
def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    user = get_active(db, USER, user_id)
    _authorize_user_access(actor, user, Action.UPDATE)

    if body.name is not None:
        user.name = body.name
    if body.email is not None and body.email != user.email:
        existing = db.query(User).filter(User.email == body.email, User.id != user_id).first()
        if existing:
            raise ValidationError("Email already in use")
        user.email = body.email
    if body.password is not None:
        user.password_hash = hash_password(body.password)
    if body.phone is not None:
        user.phone = body.phone
    if body.avatar is not None:
        user.avatar = body.avatar

    db.commit()
    db.refresh(user)
    return user_to_dict(user)


@router.delete(
    "/users/{user_id}",
    response_model=DeletionResponse,
    summary="Delete a user (super admin only)",
)
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    require_super_admin(actor, "delete users")

    user = get_active(db, USER, user_id)
    if user.role.name == SUPER_ADMIN_ROLE:
        raise ValidationError(f"Cannot delete {SUPER_ADMIN_ROLE} user")

    owned = {
        "companies": db.query(Company).filter(Company.created_by == user_id, Company.deleted_at.is_(None)).count(),
        "customers": db.query(Customer).filter(Customer.created_by == user_id, Customer.deleted_at.is_(None)).count(),
        "leads": db.query(Lead).filter(Lead.created_by == user_id, Lead.deleted_at.is_(None)).count(),
    }
    if any(owned.values()):
        raise ValidationError(
            "Cannot delete user who owns leads, customers, or companies",
            owned=owned,
        )

    result = delete_entity(db, actor, USER, user_id)
    return {"detail": "User deleted successfully", **result.to_dict()}


@router.put(
    "/users/{user_id}/role",
    response_model=UserResponse,
    summary="Change a user's role (super admin only)",
)
def update_user_role(
    user_id: uuid.UUID,
    body: UserRoleUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    require_super_admin(actor, "update user roles")

    user = get_active(db, USER, user_id)
    role = _get_role(db, body.role)
    user.role_id = role.id

    db.commit()
    db.refresh(user)

    logger.info("User '%s' moved to role '%s'", user.email, role.name)
    return user_to_dict(user)
