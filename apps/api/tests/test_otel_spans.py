from __future__ import annotations

import os
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.business.deals.models import Deal
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import setup_inmemory_otel
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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


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


def _deal(session: Session, status: str = "negotiation") -> Deal:
    deal = Deal(
        client_name="Ada Lovelace",
        client_email="ada@example.com",
        company="Analytical Engines Ltd",
        event_title="Tracing Summit",
        event_date=date(2026, 11, 20),
        event_location="London",
        event_type="Keynote",
        attendee_count=120,
        deal_value=Decimal("8000"),
        status=status,
        priority="medium",
        source="referral",
    )
    session.add(deal)
    session.commit()
    session.refresh(deal)
    return deal


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/api/deals/inquiry",
        json={
            "client_name": "Grace Hopper",
            "client_email": "grace@example.com",
            "event_title": "Annual Engineering Offsite",
        },
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)
    assert any(span.name == "deals.create" for span in spans)


def test_status_change_span_carries_deal_and_correlation(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    deal = _deal(db_session)

    response = client.post(
        f"/api/deals/{deal.id}/status",
        json={"status": "won"},
        headers={"X-Correlation-Id": "otel-status-1"},
    )
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    status_spans = [span for span in spans if span.name == "deals.set_status"]
    assert status_spans
    assert any(
        span.attributes.get("deal_id") == str(deal.id)
        and span.attributes.get("deal.status") == "won"
        and span.attributes.get("correlation_id") == "otel-status-1"
        for span in status_spans
    )
    assert any(span.name == "projects.on_deal_won" for span in spans)


def test_signature_span_records_party(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    deal = _deal(db_session, status="won")
    created = client.post(
        "/api/contracts",
        json={
            "deal_id": str(deal.id),
            "speaker_info": {"name": "Alan Turing", "email": "alan@example.com", "fee": "8000"},
            "client_signer": {"name": "Bob Babbage", "email": "bob@example.com", "title": "COO"},
        },
    )
    assert created.status_code == 201
    contract = created.json()
    token = contract["speaker_signing_url"].rsplit("/", 1)[1]

    signed = client.post(
        f"/api/contracts/sign/{token}",
        json={"signer_name": "Alan Turing"},
        headers={"X-Correlation-Id": "otel-sign-1"},
    )
    assert signed.status_code == 200

    signature_spans = [span for span in span_exporter.get_finished_spans() if span.name == "contracts.record_signature"]
    assert signature_spans
    assert any(
        span.attributes.get("contract_id") == contract["id"]
        and span.attributes.get("contract.party") == "speaker"
        and span.attributes.get("correlation_id") == "otel-sign-1"
        for span in signature_spans
    )
