from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import auth_headers, make_customer, make_lead
from manuflow.models import Lead, LeadActivity, User


def _lead_body(customer_id, **overrides) -> dict:
    body = {
        "deal_name": "Press line",
        "amount": "25000.00",
        "product": "Hydraulic press",
        "date": "2026-10-01",
        "customer_id": str(customer_id),
    }
    body.update(overrides)
    return body


def test_create_lead_records_activity(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    headers = auth_headers(sales)

    resp = client.post("/api/v1/leads", json=_lead_body(customer.id), headers=headers)
    assert resp.status_code == 201
    lead = resp.json()
    assert lead["stage"] == "new"

    resp = client.get(f"/api/v1/leads/{lead['id']}", headers=headers)
    detail = resp.json()
    assert detail["customer_name"] == "Jane Doe"
    assert [a["activity_type"] for a in detail["activities"]] == ["created"]


def test_create_lead_rejects_unknown_stage(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    resp = client.post(
        "/api/v1/leads",
        json=_lead_body(customer.id, stage="dreaming"),
        headers=auth_headers(sales),
    )
    assert resp.status_code == 422


def test_create_lead_for_deleted_customer_is_404(
    client: TestClient, db_session: Session, sales: User
) -> None:
    customer = make_customer(db_session, sales)
    customer.deleted_at = customer.created_at
    db_session.commit()

    resp = client.post("/api/v1/leads", json=_lead_body(customer.id), headers=auth_headers(sales))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Customer not found"


def test_stage_change_is_logged(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer)

    resp = client.put(
        f"/api/v1/leads/{lead.id}",
        json={"stage": "proposal", "notes": "Sent quote"},
        headers=auth_headers(sales),
    )
    assert resp.status_code == 200
    assert resp.json()["stage"] == "proposal"

    activity = db_session.query(LeadActivity).filter(LeadActivity.lead_id == lead.id).one()
    assert activity.activity_type == "stage_changed"
    assert activity.previous_value == {"stage": "new", "notes": None}
    assert activity.new_value == {"stage": "proposal", "notes": "Sent quote"}


def test_update_without_changes_logs_nothing(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer)

    resp = client.put(f"/api/v1/leads/{lead.id}", json={"stage": "new"}, headers=auth_headers(sales))
    assert resp.status_code == 200
    assert db_session.query(LeadActivity).count() == 0


def test_telecaller_updates_but_cannot_delete_others_leads(
    client: TestClient, db_session: Session, sales: User, telecaller: User
) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer)
    headers = auth_headers(telecaller)

    resp = client.put(f"/api/v1/leads/{lead.id}", json={"stage": "contacted"}, headers=headers)
    assert resp.status_code == 200

    resp = client.delete(f"/api/v1/leads/{lead.id}", headers=headers)
    assert resp.status_code == 403
    db_session.expire_all()
    assert db_session.get(Lead, lead.id).deleted_at is None


def test_delete_lead_archives_activities(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer, with_activity=True)

    resp = client.delete(f"/api/v1/leads/{lead.id}", headers=auth_headers(sales))

    assert resp.status_code == 200
    body = resp.json()
    assert body["detail"] == "Lead deleted successfully"
    assert body["activities_archived"] == 1

    resp = client.get(f"/api/v1/leads/{lead.id}", headers=auth_headers(sales))
    assert resp.status_code == 404


def test_list_filters_by_stage(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    make_lead(db_session, sales, customer, deal_name="Fresh")
    won = make_lead(db_session, sales, customer, deal_name="Closed")
    won.stage = "won"
    db_session.commit()

    resp = client.get("/api/v1/leads", params={"stage": "won"}, headers=auth_headers(sales))
    assert resp.status_code == 200
    assert [lead["deal_name"] for lead in resp.json()["items"]] == ["Closed"]


def test_optional_fields_can_be_cleared(client: TestClient, db_session: Session, sales: User) -> None:
    customer = make_customer(db_session, sales)
    lead = make_lead(db_session, sales, customer)
    headers = auth_headers(sales)
    client.put(
        f"/api/v1/leads/{lead.id}",
        json={"notes": "Call back Monday", "document_url": "https://docs.example.com/q.pdf"},
        headers=headers,
    )

    resp = client.put(
        f"/api/v1/leads/{lead.id}",
        json={"notes": None, "document_url": None, "deal_name": None},
        headers=headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["notes"] is None
    assert body["document_url"] is None
    assert body["deal_name"] == "Conveyor retrofit"

    activities = db_session.query(LeadActivity).filter(LeadActivity.lead_id == lead.id).all()
    cleared = [a for a in activities if a.new_value == {"notes": None, "document_url": None}]
    assert len(cleared) == 1
    assert cleared[0].previous_value == {
        "notes": "Call back Monday",
        "document_url": "https://docs.example.com/q.pdf",
    }
