from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


def _client_for(db_session: Session, user: AuthUser) -> TestClient:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_auth_user
    return TestClient(app)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    previous = get_notification_gateway()
    set_notification_gateway(InMemoryNotificationGateway())
    with _client_for(db_session, AuthUser(sub="metrics-admin", roles=["admin"])) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    set_notification_gateway(previous)


def _deal_payload() -> dict:
    return {
        "client_name": "Ada Lovelace",
        "client_email": "ada@example.com",
        "company": "Analytical Engines Ltd",
        "event_title": "Metrics Summit",
        "event_date": "2026-11-20",
        "event_location": "London",
        "event_type": "Keynote",
        "attendee_count": 200,
        "budget_range": "$20k-$30k",
        "deal_value": 25000,
        "status": "lead",
        "priority": "medium",
        "source": "referral",
        "notes": "",
        "last_contact": "2026-03-01",
    }


def test_metrics_endpoint_exposes_http_and_booking_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    deal = client.post("/api/deals", json=_deal_payload())
    assert deal.status_code == 201
    deal_id = deal.json()["id"]

    won = client.post(f"/api/deals/{deal_id}/status", json={"status": "won"})
    assert won.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "booking_notifications_total" in body
    assert "booking_projects_provisioned_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/deals/{deal_id}/status"' in body
    assert deal_id not in body


def test_public_token_paths_are_not_exposed_as_labels(client: TestClient) -> None:
    secret = "tok-" + uuid.uuid4().hex
    client.get(f"/api/contracts/sign/{secret}")
    client.get(f"/api/firm-offers/public/{secret}")

    body = client.get("/metrics").text
    assert secret not in body
    assert 'path="/api/contracts/sign/{token}"' in body


def test_metrics_require_permission(db_session: Session) -> None:
    with _client_for(db_session, AuthUser(sub="viewer", roles=["booking.deals.read"])) as test_client:
        response = test_client.get("/metrics")
    app.dependency_overrides.clear()
    assert response.status_code == 403


def test_metrics_scoped_role_is_enough(db_session: Session) -> None:
    with _client_for(db_session, AuthUser(sub="scraper", roles=["system.metrics.read"])) as test_client:
        response = test_client.get("/metrics")
    app.dependency_overrides.clear()
    assert response.status_code == 200


def test_metrics_disabled_returns_not_found(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    with _client_for(db_session, AuthUser(sub="scraper", roles=["system.metrics.read"])) as test_client:
        response = test_client.get("/metrics")
    app.dependency_overrides.clear()
    assert response.status_code == 404
