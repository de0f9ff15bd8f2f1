"""
JWT utilities and FastAPI dependencies for user authentication.
"""
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from manuflow.core.config import settings
from manuflow.core.database import get_db
from manuflow.core.errors import AuthenticationError
from manuflow.core.permissions import Action, Resource
from manuflow.models.user import User
from manuflow.services.authorization import Actor, require_grant
from manuflow.services.permission_registry import registry

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: uuid.UUID, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid or expired token")


def build_actor(db: Session, user: User) -> Actor:
    """Snapshot the user's role grants into an immutable Actor."""
    grants = registry.grants_for(db, user.role)
    return Actor(
        id=user.id,
        role=user.role.name,
        permissions=grants.permissions,
        name=user.name,
        email=user.email,
    )


# ── Dependencies ───────────────────────────────────────────────────────────

def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Actor:
    """Extracts and validates the JWT, returns the request's Actor."""
    if not credentials:
        raise AuthenticationError("Authentication required")

    data = decode_token(credentials.credentials)
    try:
        user_id = uuid.UUID(str(data.get("sub")))
    except ValueError:
        raise AuthenticationError("Invalid or expired token")

    user = db.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()
    if not user:
        raise AuthenticationError("User not found or inactive")
    return build_actor(db, user)


def require_permission(resource: Resource, action: Action):
    """
    Returns a FastAPI dependency that checks the actor's role grants the action.

    Usage:
        @router.post("/...", dependencies=[Depends(require_permission(Resource.LEADS, Action.CREATE))])
    """

    def _checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        require_grant(actor, resource, action)
        return actor

    return _checker
