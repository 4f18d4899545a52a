from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import SWEEP_INTERVAL_SECONDS, _TokenBucketLimiter, reset_rate_limiter
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
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_PUBLIC_TOKENS_PER_MINUTE", "3")
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


def test_public_token_lookups_are_rate_limited(client: TestClient) -> None:
    responses = [client.get("/api/firm-offers/public/unknown-token") for _ in range(6)]

    assert [response.status_code for response in responses[:3]] == [404, 404, 404]
    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "rate_limited"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert int(first_limited.headers["Retry-After"]) >= 1


def test_contract_signing_routes_share_a_bucket_per_client(client: TestClient) -> None:
    for _ in range(3):
        assert client.get("/api/contracts/sign/unknown-token").status_code == 401

    limited = client.post("/api/contracts/sign/unknown-token", json={"signer_name": "Bob"})
    assert limited.status_code == 429


def test_forwarded_header_from_untrusted_peer_is_ignored(client: TestClient) -> None:
    statuses = [
        client.get("/api/contracts/sign/unknown-token", headers={"X-Forwarded-For": f"10.0.0.{index}"}).status_code
        for index in range(10)
    ]
    assert statuses[:3] == [401, 401, 401]
    assert set(statuses[3:]) == {429}


def test_forwarded_header_from_trusted_proxy_selects_the_bucket(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_TRUSTED_PROXIES", "testclient, 10.1.1.1")
    get_settings.cache_clear()

    first = {"X-Forwarded-For": "198.51.100.4, 10.1.1.1"}
    for _ in range(3):
        assert client.get("/api/contracts/sign/unknown-token", headers=first).status_code == 401
    assert client.get("/api/contracts/sign/unknown-token", headers=first).status_code == 429

    # a spoofed leftmost hop does not change the client seen by the proxy
    spoofed = {"X-Forwarded-For": "1.2.3.4, 198.51.100.4"}
    assert client.get("/api/contracts/sign/unknown-token", headers=spoofed).status_code == 429

    other_client = {"X-Forwarded-For": "203.0.113.7"}
    assert client.get("/api/contracts/sign/unknown-token", headers=other_client).status_code == 401


def test_inquiry_endpoint_is_rate_limited(client: TestClient) -> None:
    payload = {
        "client_name": "Grace Hopper",
        "client_email": "grace@example.com",
        "event_title": "Annual Engineering Offsite",
    }
    statuses = [client.post("/api/deals/inquiry", json=payload).status_code for _ in range(5)]
    assert statuses[:3] == [201, 201, 201]
    assert 429 in statuses[3:]


def test_authenticated_routes_are_not_rate_limited(client: TestClient) -> None:
    responses = [client.get("/api/deals") for _ in range(10)]
    assert all(response.status_code == 200 for response in responses)


def test_refilled_buckets_are_evicted() -> None:
    limiter = _TokenBucketLimiter()
    start = 1000.0
    for index in range(50):
        assert limiter.take(f"10.0.0.{index}", "api/contracts/sign", capacity=3, window_seconds=60, now=start) == (True, 0)
    assert len(limiter) == 50

    later = start + SWEEP_INTERVAL_SECONDS + 60
    assert limiter.take("10.9.9.9", "api/contracts/sign", capacity=3, window_seconds=60, now=later) == (True, 0)
    assert len(limiter) == 1


def test_drained_buckets_survive_the_sweep() -> None:
    limiter = _TokenBucketLimiter()
    start = 1000.0
    for _ in range(3):
        limiter.take("10.0.0.1", "api/contracts/sign", capacity=3, window_seconds=600, now=start)

    later = start + SWEEP_INTERVAL_SECONDS + 1
    allowed, retry_after = limiter.take("10.0.0.1", "api/contracts/sign", capacity=3, window_seconds=600, now=later)
    assert allowed is False
    assert retry_after >= 1
    assert len(limiter) == 1
