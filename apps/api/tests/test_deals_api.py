from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.business.projects.models import Project
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.notifications import (
    InMemoryNotificationGateway,
    get_notification_gateway,
    set_notification_gateway,
)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("ADMIN_NOTIFICATION_EMAIL", "bookings@example.com")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def gateway() -> Generator[InMemoryNotificationGateway, None, None]:
    previous = get_notification_gateway()
    memory = InMemoryNotificationGateway()
    set_notification_gateway(memory)
    yield memory
    set_notification_gateway(previous)


@pytest.fixture()
def client(db_session: Session, gateway: InMemoryNotificationGateway) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthUser:
        return AuthUser(sub="admin-1", roles=["admin"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _deal_payload(**overrides: object) -> dict:
    payload = {
        "client_name": "Ada Lovelace",
        "client_email": "ada@example.com",
        "company": "Analytical Engines Ltd",
        "event_title": "Future of Computing Summit",
        "event_date": "2026-11-20",
        "event_location": "London",
        "event_type": "Keynote",
        "attendee_count": 400,
        "budget_range": "$40k-$60k",
        "deal_value": 50000,
        "status": "lead",
        "priority": "high",
        "source": "referral",
        "notes": "",
        "last_contact": "2026-03-01",
    }
    payload.update(overrides)
    return payload


def _create_deal(client: TestClient, **overrides: object) -> dict:
    response = client.post("/api/deals", json=_deal_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def test_won_transition_provisions_invoicing_project(
    client: TestClient,
    db_session: Session,
    gateway: InMemoryNotificationGateway,
) -> None:
    deal = _create_deal(client)
    assert deal["status"] == "lead"
    assert deal["projectCreated"] is False
    assert gateway.sent_kinds() == ["new_deal"]

    response = client.post(f"/api/deals/{deal['id']}/status", json={"status": "won"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "won"
    assert body["won_at"] is not None
    assert body["projectCreated"] is True
    assert body["projectId"]

    project = db_session.scalar(select(Project).where(Project.deal_id == uuid.UUID(deal["id"])))
    assert project is not None
    assert project.status == "invoicing"
    assert Decimal(project.budget) == Decimal("50000")
    assert Decimal(project.commission_amount) == Decimal("10000.00")
    assert Decimal(project.speaker_fee) == Decimal("40000.00")
    assert project.project_type == "Speaking"
    assert project.stage_completion["invoicing"]["contract_signed"] is False
    assert str(project.id) == body["projectId"]

    assert gateway.sent_kinds() == ["new_deal", "deal_won"]
    won_events = [item for item in events.published_events if item["event_type"] == "booking.deal.won"]
    assert won_events and won_events[-1]["payload"]["project_created"] is True

    projects = client.get("/api/projects", params={"deal_id": deal["id"]})
    assert projects.status_code == 200
    assert [item["id"] for item in projects.json()] == [body["projectId"]]


def test_reentering_won_keeps_single_project(client: TestClient, db_session: Session) -> None:
    deal = _create_deal(client)
    first = client.post(f"/api/deals/{deal['id']}/status", json={"status": "won"}).json()
    lost = client.post(f"/api/deals/{deal['id']}/status", json={"status": "lost"}).json()
    assert lost["status"] == "lost"
    assert lost["lost_at"] is not None

    again = client.post(f"/api/deals/{deal['id']}/status", json={"status": "won"})
    assert again.status_code == 200
    body = again.json()
    assert body["projectCreated"] is False
    assert body["projectId"] == first["projectId"]

    count = db_session.scalar(select(func.count()).select_from(Project).where(Project.deal_id == uuid.UUID(deal["id"])))
    assert count == 1


def test_deal_created_as_won_is_provisioned(client: TestClient) -> None:
    deal = _create_deal(client, status="won")
    assert deal["projectCreated"] is True
    assert deal["projectId"]


def test_unchanged_status_has_no_side_effects(client: TestClient, gateway: InMemoryNotificationGateway) -> None:
    deal = _create_deal(client)
    events.published_events.clear()

    response = client.post(f"/api/deals/{deal['id']}/status", json={"status": "lead"})
    assert response.status_code == 200
    assert response.json()["message"] == "status unchanged"
    assert events.published_events == []
    assert gateway.sent_kinds() == ["new_deal"]


def test_patch_to_won_provisions_project(client: TestClient) -> None:
    deal = _create_deal(client, status="negotiation")
    response = client.patch(f"/api/deals/{deal['id']}", json={"status": "won", "deal_value": 60000})
    assert response.status_code == 200
    body = response.json()
    assert body["projectCreated"] is True
    assert Decimal(str(body["deal_value"])) == Decimal("60000")


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"client_email": "not-an-email"}, "client_email"),
        ({"deal_value": 0}, "deal_value"),
        ({"attendee_count": -1}, "attendee_count"),
        ({"status": "archived"}, "status"),
        ({"event_location": "  "}, "event_location"),
        ({"company": None}, "company"),
    ],
)
def test_create_deal_validation(client: TestClient, overrides: dict, field: str) -> None:
    response = client.post("/api/deals", json=_deal_payload(**overrides))
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["details"] == {"field": field}
    assert body["correlation_id"]


def test_public_inquiry_creates_lead_without_auth(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as anonymous:
            response = anonymous.post(
                "/api/deals/inquiry",
                json={
                    "client_name": "Grace Hopper",
                    "client_email": "grace@example.com",
                    "event_title": "Navy Tech Day",
                    "message": "Looking for a keynote speaker",
                },
            )
            denied = anonymous.get("/api/deals")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "lead"
    assert body["source"] == "website_inquiry"
    assert body["notes"] == "Looking for a keynote speaker"
    assert gateway.sent_kinds() == ["new_deal"]
    assert denied.status_code == 403


def test_search_and_status_filter(client: TestClient) -> None:
    _create_deal(client, company="Acme Corp", event_title="Acme Offsite")
    _create_deal(client, company="Globex", event_title="Globex Kickoff", status="qualified")

    acme = client.get("/api/deals", params={"search": "acme"})
    assert acme.status_code == 200
    assert [item["company"] for item in acme.json()] == ["Acme Corp"]

    qualified = client.get("/api/deals", params={"status": "qualified"})
    assert [item["company"] for item in qualified.json()] == ["Globex"]

    invalid = client.get("/api/deals", params={"status": "archived"})
    assert invalid.status_code == 400


def test_unknown_deal_returns_not_found(client: TestClient) -> None:
    response = client.get(f"/api/deals/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_status_change_is_audited_with_changed_fields(client: TestClient) -> None:
    deal = _create_deal(client)
    client.post(f"/api/deals/{deal['id']}/status", json={"status": "qualified"})

    entries = audit.entries_for("deal", deal["id"])
    assert entries[-1]["action"] == "set_status"
    assert entries[-1]["actor_user_id"] == "admin-1"
    assert "status" in entries[-1]["changes"]
    assert "client_name" not in entries[-1]["changes"]
