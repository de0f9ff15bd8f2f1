import datetime
import os
from collections.abc import Generator
from decimal import Decimal
from functools import lru_cache

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import manuflow.models  # noqa: F401
from manuflow.core.auth import create_access_token, hash_password
from manuflow.core.database import Base, get_db
from manuflow.core.permissions import DEFAULT_ROLE_PERMISSIONS, SUPER_ADMIN_ROLE
from manuflow.main import app
from manuflow.models import Company, Customer, Lead, LeadActivity, Role, User
from manuflow.services.permission_registry import registry

PASSWORD = "secret123"


@lru_cache(maxsize=1)
def password_hash() -> str:
    return hash_password(PASSWORD)


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clear_registry() -> Generator[None, None, None]:
    registry.clear()
    yield
    registry.clear()


@pytest.fixture()
def client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def roles(db_session: Session) -> dict[str, Role]:
    """super_admin, sales and telecaller with their default grants."""
    created = {}
    for name in (SUPER_ADMIN_ROLE, "sales", "telecaller"):
        role = Role(name=name, description=f"{name} role")
        db_session.add(role)
        created[name] = role
    db_session.commit()

    for name, grants in DEFAULT_ROLE_PERMISSIONS.items():
        registry.replace(db_session, name, grants)
    registry.clear()
    for role in created.values():
        db_session.refresh(role)
    return created


@pytest.fixture()
def admin(db_session: Session, roles: dict[str, Role]) -> User:
    return make_user(db_session, roles[SUPER_ADMIN_ROLE], name="Admin", email="admin@example.com")


@pytest.fixture()
def sales(db_session: Session, roles: dict[str, Role]) -> User:
    return make_user(db_session, roles["sales"], name="Sam Sales", email="sam@example.com")


@pytest.fixture()
def telecaller(db_session: Session, roles: dict[str, Role]) -> User:
    return make_user(db_session, roles["telecaller"], name="Tara Caller", email="tara@example.com")


# ── Builders ───────────────────────────────────────────────────────────────

def make_user(
    session: Session,
    role: Role,
    name: str = "User",
    email: str | None = None,
    created_by: User | None = None,
) -> User:
    user = User(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        password_hash=password_hash(),
        role_id=role.id,
        created_by=created_by.id if created_by else None,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_company(session: Session, owner: User, name: str = "Acme") -> Company:
    company = Company(name=name, industry="Manufacturing", location="Pune", created_by=owner.id)
    session.add(company)
    session.commit()
    session.refresh(company)
    return company


def make_customer(
    session: Session,
    owner: User,
    company: Company | None = None,
    name: str = "Jane Doe",
) -> Customer:
    customer = Customer(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        phone="555-0100",
        company_id=company.id if company else None,
        created_by=owner.id,
    )
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


def make_lead(
    session: Session,
    owner: User,
    customer: Customer,
    deal_name: str = "Conveyor retrofit",
    with_activity: bool = False,
) -> Lead:
    lead = Lead(
        deal_name=deal_name,
        amount=Decimal("1500.00"),
        product="Conveyor",
        stage="new",
        date=datetime.date(2026, 10, 1),
        customer_id=customer.id,
        created_by=owner.id,
    )
    session.add(lead)
    session.flush()
    if with_activity:
        session.add(LeadActivity(
            lead_id=lead.id,
            user_id=owner.id,
            activity_type="created",
            description="Lead created",
            new_value={"stage": "new"},
        ))
    session.commit()
    session.refresh(lead)
    return lead


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user_id=user.id, role=user.role.name)
    return {"Authorization": f"Bearer {token}"}
