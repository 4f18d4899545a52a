from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.business.firm_offers import tasks as firm_offer_tasks
from app.business.firm_offers.schemas import FirmOfferCreate
from app.business.firm_offers.service import firm_offer_service
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.notifications import (
    InMemoryNotificationGateway,
    get_notification_gateway,
    set_notification_gateway,
)
from app.platform.tokens import encode_legacy_token, token_service


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
    monkeypatch.setenv("JWT_SECRET", "auth-test-secret")
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    previous = get_notification_gateway()
    set_notification_gateway(InMemoryNotificationGateway())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    # no user override: requests authenticate with real bearer tokens
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    set_notification_gateway(previous)


def _bearer(sub: str, roles: list[str]) -> dict[str, str]:
    issued = token_service.issue("session", sub, roles=roles)
    return {"Authorization": f"Bearer {issued.value}"}


def test_me_resolves_session_token(client: TestClient) -> None:
    response = client.get("/me", headers=_bearer("user-42", ["booking.deals.read"]))
    assert response.status_code == 200
    assert response.json() == {"sub": "user-42", "roles": ["booking.deals.read"]}


def test_missing_or_invalid_token_is_guest(client: TestClient) -> None:
    assert client.get("/me").json()["sub"] == "anonymous"
    invalid = client.get("/me", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.json() == {"sub": "anonymous", "roles": ["guest"]}


def test_permissions_follow_token_roles(client: TestClient) -> None:
    reader = _bearer("reader", ["booking.deals.read"])
    assert client.get("/api/deals", headers=reader).status_code == 200

    forbidden = client.post("/api/deals", json={"client_name": "X"}, headers=reader)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "deal_create_failed"

    assert client.get("/api/deals").status_code == 403


def test_refresh_issues_new_session_token(client: TestClient) -> None:
    response = client.post("/api/auth/refresh", headers=_bearer("user-7", ["admin"]))
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_at"]

    subject = token_service.validate(body["access_token"], "session")
    assert subject is not None
    assert subject.subject_id == "user-7"
    assert list(subject.roles) == ["admin"]


def test_refresh_without_session_is_rejected(client: TestClient) -> None:
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "invalid_token"
    assert body["message"] == "invalid or expired link"


def test_notification_endpoints_require_permission(client: TestClient) -> None:
    assert client.get("/api/notifications/deliveries").status_code == 403

    admin = _bearer("admin-1", ["admin"])
    inquiry = client.post(
        "/api/deals/inquiry",
        json={
            "client_name": "Grace Hopper",
            "client_email": "grace@example.com",
            "event_title": "Annual Engineering Offsite",
        },
    )
    assert inquiry.status_code == 201

    deliveries = client.get("/api/notifications/deliveries", headers=admin)
    assert deliveries.status_code == 200
    assert [item["kind"] for item in deliveries.json()] == ["new_deal"]

    summary = client.get("/api/notifications/summary", headers=admin)
    assert summary.status_code == 200
    assert summary.json()["total"] == 1
    assert summary.json()["delivered"] == 1


def test_hold_sweep_task_uses_its_own_session(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    created, _ = firm_offer_service.create_offer(
        db_session,
        "admin-1",
        FirmOfferCreate(status="submitted"),
        now=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )
    monkeypatch.setattr(firm_offer_tasks, "SessionLocal", lambda: db_session)

    assert firm_offer_tasks.sweep_expired_holds_task() == 1

    expired_events = [item for item in events.published_events if item["event_type"] == "booking.firm_offer.hold_expired"]
    assert [item["payload"]["firm_offer_id"] for item in expired_events] == [str(created.id)]
    assert expired_events[0]["correlation_id"].startswith("hold-sweep-")


def test_staff_roles_expand_to_permission_sets(client: TestClient) -> None:
    agent = _bearer("agent-1", ["agent"])
    finance = _bearer("finance-1", ["finance"])

    assert client.get("/api/deals", headers=agent).status_code == 200
    assert client.get("/api/contracts", headers=agent).status_code == 200
    assert client.get("/api/notifications/summary", headers=agent).status_code == 403

    assert client.get("/api/notifications/summary", headers=finance).status_code == 200
    assert client.get("/api/projects", headers=finance).status_code == 200
    assert client.post("/api/deals", json={"client_name": "X"}, headers=finance).status_code == 403


def test_refresh_route_is_registered(client: TestClient) -> None:
    schema = client.get("/openapi.json")
    assert schema.status_code == 200
    assert "post" in schema.json()["paths"]["/api/auth/refresh"]


def test_forged_legacy_admin_token_is_a_guest_by_default(client: TestClient) -> None:
    forged = {"Authorization": f"Bearer {encode_legacy_token('admin', 'attacker')}"}

    assert client.get("/me", headers=forged).json() == {"sub": "anonymous", "roles": ["guest"]}
    assert client.get("/api/deals", headers=forged).status_code == 403
    assert client.post("/api/auth/refresh", headers=forged).status_code == 401


def test_forged_legacy_admin_token_only_gets_speaker_role(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEGACY_SESSION_TOKENS_ENABLED", "true")
    get_settings.cache_clear()
    forged = {"Authorization": f"Bearer {encode_legacy_token('admin', 'attacker')}"}

    assert client.get("/me", headers=forged).json() == {"sub": "attacker", "roles": ["speaker"]}
    assert client.get("/api/deals", headers=forged).status_code == 403

    refreshed = client.post("/api/auth/refresh", headers=forged)
    assert refreshed.status_code == 401
    assert refreshed.json()["code"] == "invalid_token"
