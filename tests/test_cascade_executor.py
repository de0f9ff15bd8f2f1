import pytest
from sqlalchemy.orm import Session, sessionmaker

from conftest import make_company, make_customer, make_lead
from manuflow.core.errors import DeletionBlockedError, ValidationError
from manuflow.models import Company, Customer, Lead, LeadActivity, User
from manuflow.services import cascade_executor
from manuflow.services.cascade_executor import execute_plan
from manuflow.services.deletion_planner import COMPANY, CUSTOMER, LEAD, plan_deletion


def _active(session: Session, model) -> int:
    return session.query(model).filter(model.deleted_at.is_(None)).count()


def _company_tree(session: Session, owner: User, activities: bool = False) -> Company:
    company = make_company(session, owner)
    for i in range(2):
        customer = make_customer(session, owner, company, name=f"Customer {i}")
        for j in range(3):
            make_lead(session, owner, customer, deal_name=f"Deal {i}-{j}", with_activity=activities)
    return company


def test_force_cascade_deletes_the_whole_tree(db_session: Session, sales: User) -> None:
    company = _company_tree(db_session, sales, activities=True)

    plan = plan_deletion(db_session, COMPANY, company.id, force=True)
    result = execute_plan(db_session, plan)

    assert result.strategy == "force_cascade"
    assert result.deleted == 9
    assert result.deleted_by_type == {"company": 1, "customer": 2, "lead": 6}
    assert result.activities_archived == 6

    db_session.expire_all()
    assert _active(db_session, Company) == 0
    assert _active(db_session, Customer) == 0
    assert _active(db_session, Lead) == 0
    assert _active(db_session, LeadActivity) == 0


def test_failure_midway_rolls_back_everything(
    db_session: Session, sales: User, monkeypatch: pytest.MonkeyPatch
) -> None:
    company = _company_tree(db_session, sales, activities=True)
    plan = plan_deletion(db_session, COMPANY, company.id, force=True)

    original = cascade_executor.soft_delete_rows

    def failing(session, model, ids, now):
        if model is Customer:
            raise RuntimeError("disk full")
        return original(session, model, ids, now)

    monkeypatch.setattr(cascade_executor, "soft_delete_rows", failing)

    with pytest.raises(RuntimeError, match="disk full"):
        execute_plan(db_session, plan)

    db_session.expire_all()
    assert _active(db_session, Company) == 1
    assert _active(db_session, Customer) == 2
    assert _active(db_session, Lead) == 6
    assert _active(db_session, LeadActivity) == 6


def test_reassign_moves_children_then_deletes(db_session: Session, sales: User) -> None:
    source = make_customer(db_session, sales, name="Source")
    target = make_customer(db_session, sales, name="Target")
    leads = [make_lead(db_session, sales, source) for _ in range(3)]

    plan = plan_deletion(db_session, CUSTOMER, source.id, force=True, reassign_target_id=target.id)
    result = execute_plan(db_session, plan)

    assert result.strategy == "reassign"
    assert result.reassigned == 3
    assert result.reassigned_to == target.id
    assert result.deleted == 1

    db_session.expire_all()
    assert {lead.customer_id for lead in db_session.query(Lead).all()} == {target.id}
    assert all(db_session.get(Lead, lead.id).deleted_at is None for lead in leads)
    assert db_session.get(Customer, source.id).deleted_at is not None
    assert db_session.get(Customer, target.id).deleted_at is None


def test_reassign_skips_soft_deleted_children(db_session: Session, sales: User) -> None:
    source = make_customer(db_session, sales, name="Source")
    target = make_customer(db_session, sales, name="Target")
    make_lead(db_session, sales, source)
    archived = make_lead(db_session, sales, source, deal_name="Old deal")
    archived.deleted_at = archived.created_at
    db_session.commit()

    plan = plan_deletion(db_session, CUSTOMER, source.id, force=True, reassign_target_id=target.id)
    result = execute_plan(db_session, plan)

    assert result.reassigned == 1
    db_session.expire_all()
    assert db_session.get(Lead, archived.id).customer_id == source.id


def test_direct_lead_delete_archives_its_activities(db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer, with_activity=True)

    result = execute_plan(db_session, plan_deletion(db_session, LEAD, lead.id))

    assert result.strategy == "direct"
    assert result.deleted_by_type == {"lead": 1}
    assert result.activities_archived == 1
    db_session.expire_all()
    assert _active(db_session, LeadActivity) == 0


def test_blocked_plan_raises_without_writing(db_session: Session, sales: User) -> None:
    company = _company_tree(db_session, sales)

    with pytest.raises(DeletionBlockedError) as exc_info:
        execute_plan(db_session, plan_deletion(db_session, COMPANY, company.id))

    assert exc_info.value.dependent_count == 2
    db_session.expire_all()
    assert _active(db_session, Company) == 1


def test_previously_deleted_descendants_keep_their_timestamp(db_session: Session, sales: User) -> None:
    company = make_company(db_session, sales)
    customer = make_customer(db_session, sales, company)
    old = make_lead(db_session, sales, customer, deal_name="Old")
    make_lead(db_session, sales, customer, deal_name="Current")
    old.deleted_at = old.created_at
    db_session.commit()
    deleted_at = old.deleted_at

    result = execute_plan(db_session, plan_deletion(db_session, COMPANY, company.id, force=True))

    assert result.deleted_by_type == {"company": 1, "customer": 1, "lead": 1}
    db_session.expire_all()
    assert db_session.get(Lead, old.id).deleted_at == deleted_at


def test_reassign_rechecks_target_deleted_after_planning(
    session_factory: sessionmaker, db_session: Session, sales: User
) -> None:
    source = make_customer(db_session, sales, name="Source")
    target = make_customer(db_session, sales, name="Target")
    lead = make_lead(db_session, sales, source)
    target_id = target.id

    plan = plan_deletion(db_session, CUSTOMER, source.id, force=True, reassign_target_id=target_id)

    # A concurrent request deletes the target before this plan runs
    other = session_factory()
    try:
        execute_plan(other, plan_deletion(other, CUSTOMER, target_id))
    finally:
        other.close()

    with pytest.raises(ValidationError, match="does not exist or has been deleted"):
        execute_plan(db_session, plan)

    db_session.expire_all()
    assert db_session.get(Lead, lead.id).customer_id == source.id
    assert db_session.get(Customer, source.id).deleted_at is None


def test_reassign_failure_leaves_foreign_keys_unchanged(
    db_session: Session, sales: User, monkeypatch: pytest.MonkeyPatch
) -> None:
    source_company = make_company(db_session, sales, name="Source")
    target_company = make_company(db_session, sales, name="Target")
    customers = [make_customer(db_session, sales, source_company, name=f"C{i}") for i in range(3)]
    plan = plan_deletion(
        db_session, COMPANY, source_company.id, force=True, reassign_target_id=target_company.id
    )

    def failing(session, plan, now):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(cascade_executor, "_delete_root", failing)

    with pytest.raises(RuntimeError, match="connection lost"):
        execute_plan(db_session, plan)

    db_session.expire_all()
    assert {db_session.get(Customer, c.id).company_id for c in customers} == {source_company.id}
    assert db_session.get(Company, source_company.id).deleted_at is None


def test_direct_delete_leaves_every_other_row_untouched(db_session: Session, sales: User) -> None:
    company = make_company(db_session, sales, name="Main")
    sibling_company = make_company(db_session, sales, name="Sibling")
    lonely = make_customer(db_session, sales, company, name="Lonely")
    busy = make_customer(db_session, sales, company, name="Busy")
    make_lead(db_session, sales, busy, with_activity=True)
    make_lead(db_session, sales, make_customer(db_session, sales, sibling_company, name="Other"), with_activity=True)

    result = execute_plan(db_session, plan_deletion(db_session, CUSTOMER, lonely.id))
    assert result.strategy == "direct"
    assert result.deleted == 1

    db_session.expire_all()
    assert db_session.get(Customer, lonely.id).deleted_at is not None
    assert _active(db_session, Company) == 2
    assert _active(db_session, Customer) == 2
    assert _active(db_session, Lead) == 2
    assert _active(db_session, LeadActivity) == 2
    assert db_session.get(Company, company.id).deleted_at is None
    assert db_session.get(Company, sibling_company.id).deleted_at is None


def test_direct_company_delete_leaves_siblings_untouched(db_session: Session, sales: User) -> None:
    empty = make_company(db_session, sales, name="Empty")
    _company_tree(db_session, sales, activities=True)

    result = execute_plan(db_session, plan_deletion(db_session, COMPANY, empty.id, force=True))
    assert result.strategy == "direct"

    db_session.expire_all()
    assert _active(db_session, Company) == 1
    assert _active(db_session, Customer) == 2
    assert _active(db_session, Lead) == 6
    assert _active(db_session, LeadActivity) == 6
