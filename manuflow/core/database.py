"""
Engine, session factory and declarative base.

PostgreSQL in deployments; SQLite URLs are accepted for local runs and tests.
"""
from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from manuflow.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; handlers commit, errors roll back on close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
