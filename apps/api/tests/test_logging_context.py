from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.context import reset_correlation_id, set_correlation_id
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.logging import CorrelationIdFilter, JsonLogFormatter
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
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    previous = get_notification_gateway()
    set_notification_gateway(InMemoryNotificationGateway())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthUser:
        return AuthUser(sub="user-1", roles=["admin"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    set_notification_gateway(previous)


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/deals/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/deals/{deal_id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_notification_logs_carry_kind_and_correlation_id(
    client: TestClient,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/deals/inquiry",
        json={
            "client_name": "Grace Hopper",
            "client_email": "grace@example.com",
            "event_title": "Annual Engineering Offsite",
        },
        headers={"X-Correlation-Id": "log-notify-1"},
    )
    assert response.status_code == 201

    notification_records = [record for record in caplog.records if record.name == "app.notifications"]
    assert any(
        record.getMessage() == "notification_sent"
        and getattr(record, "notification_kind", None) == "new_deal"
        and getattr(record, "correlation_id", None) == "log-notify-1"
        for record in notification_records
    )


def test_json_formatter_keeps_known_fields_and_truncates_errors() -> None:
    token = set_correlation_id("fmt-1")
    try:
        record = logging.makeLogRecord(
            {
                "name": "app.contracts",
                "levelno": logging.WARNING,
                "levelname": "WARNING",
                "msg": "contract_signature_rejected",
                "contract_id": "c-1",
                "party": "client",
                "error": "x" * 800,
                "unrelated": "dropped",
            }
        )
        CorrelationIdFilter().filter(record)
        payload = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_correlation_id(token)

    assert payload["logger"] == "app.contracts"
    assert payload["level"] == "WARNING"
    assert payload["msg"] == "contract_signature_rejected"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["contract_id"] == "c-1"
    assert payload["fields"]["party"] == "client"
    assert len(payload["fields"]["error"]) == 500
    assert "unrelated" not in payload["fields"]
