import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from manuflow.api.v1.endpoints.users import user_to_dict
from manuflow.core.auth import build_actor, create_access_token, get_current_actor, verify_password
from manuflow.core.database import get_db
from manuflow.core.errors import AuthenticationError
from manuflow.core.permissions import to_wire
from manuflow.models.user import User
from manuflow.schemas.user import LoginRequest, LoginResponse, UserDetailResponse
from manuflow.services.authorization import Actor

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/auth/login",
    response_model=LoginResponse,
    summary="Login and obtain JWT token",
)
def login(
    body: LoginRequest,
    db: Session = Depends(get_db),
) -> dict:
    user = (
        db.query(User)
        .filter(User.email == body.email, User.deleted_at.is_(None))
        .first()
    )
    if not user or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    user.last_login = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    actor = build_actor(db, user)
    token = create_access_token(user_id=user.id, role=actor.role)

    logger.info("User '%s' logged in", user.email)

    return {
        "access_token": token,
        "token_type": "bearer",
        "user": user_to_dict(user),
        "permissions": to_wire(actor.permissions),
    }


@router.get(
    "/auth/me",
    response_model=UserDetailResponse,
    summary="Get current authenticated user",
)
def get_me(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    user = db.query(User).filter(User.id == actor.id).first()
    return {**user_to_dict(user), "permissions": to_wire(actor.permissions)}
