from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.business.deals.models import Deal
from app.business.firm_offers.models import FirmOffer, Proposal
from app.business.firm_offers.schemas import FirmOfferCreate, FirmOfferSubmit
from app.business.firm_offers.service import firm_offer_service
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.errors import HoldExpiredError, InvalidStateError, InvalidTokenError
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.notifications import (
    InMemoryNotificationGateway,
    get_notification_gateway,
    set_notification_gateway,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


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
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bookings.example.com")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


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


def _deal(session: Session, status: str = "proposal") -> Deal:
    deal = Deal(
        client_name="Ada Lovelace",
        client_email="ada@example.com",
        company="Analytical Engines Ltd",
        event_title="Future of Computing Summit",
        event_date=date(2026, 11, 20),
        event_location="London",
        event_type="Keynote",
        attendee_count=400,
        deal_value=Decimal("25000"),
        status=status,
        priority="high",
        source="referral",
    )
    session.add(deal)
    session.commit()
    session.refresh(deal)
    return deal


def _proposal(session: Session, deal: Deal | None = None) -> Proposal:
    proposal = Proposal(
        deal_id=deal.id if deal else None,
        title="Keynote proposal",
        client_name="Ada Lovelace",
        client_email="ada@example.com",
        client_company="Analytical Engines Ltd",
        event_title="Future of Computing Summit",
        speaker_name="Alan Turing",
        total_investment=Decimal("30000"),
    )
    session.add(proposal)
    session.commit()
    session.refresh(proposal)
    return proposal


def _submitted_offer(session: Session, deal: Deal | None = None, *, now: datetime = NOW) -> FirmOffer:
    created, _ = firm_offer_service.create_offer(
        session,
        "admin-1",
        FirmOfferCreate(deal_id=deal.id if deal else None, status="submitted"),
        now=now,
    )
    offer = session.get(FirmOffer, created.id)
    assert offer is not None
    return offer


def test_default_hold_is_fourteen_days_and_lapses(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    created, was_created = firm_offer_service.create_offer(db_session, "admin-1", FirmOfferCreate(), now=NOW)
    assert was_created is True
    assert created.status == "draft"
    assert created.hold.hold_expires_at == NOW + timedelta(days=14)
    assert created.hold.days_remaining == 14
    assert created.financial_details.payment_terms == "Net 30 days after event"

    with pytest.raises(HoldExpiredError) as exc_info:
        firm_offer_service.submit_essential_info(
            db_session,
            "admin-1",
            created.id,
            FirmOfferSubmit(),
            now=NOW + timedelta(days=15),
        )
    assert exc_info.value.status_code == 410


def test_hold_has_grace_until_a_full_day_lapses(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    created, _ = firm_offer_service.create_offer(db_session, "admin-1", FirmOfferCreate(), now=NOW)

    submitted = firm_offer_service.submit_essential_info(
        db_session,
        "admin-1",
        created.id,
        FirmOfferSubmit(),
        now=NOW + timedelta(days=14, hours=12),
    )
    assert submitted.status == "submitted"
    assert submitted.hold.days_remaining == 0
    assert submitted.hold.expired is False
    assert gateway.sent_kinds() == ["firm_offer_submitted"]


def test_offer_seeded_from_proposal_and_reused(client: TestClient, db_session: Session) -> None:
    deal = _deal(db_session)
    proposal = _proposal(db_session, deal)

    first = client.post("/api/firm-offers", json={"proposal_id": str(proposal.id)})
    assert first.status_code == 201
    body = first.json()
    assert body["deal_id"] == str(deal.id)
    assert body["event_overview"]["company_name"] == "Analytical Engines Ltd"
    assert body["speaker_program"]["requested_speaker_name"] == "Alan Turing"
    assert body["speaker_name"] == "Alan Turing"
    assert Decimal(str(body["financial_details"]["speaker_fee"])) == Decimal("30000")

    second = client.post(
        "/api/firm-offers",
        json={"proposal_id": str(proposal.id), "speaker_name": "Someone Else"},
    )
    assert second.status_code == 200
    assert second.json()["id"] == body["id"]
    assert second.json()["speaker_name"] == "Alan Turing"


def test_submit_merges_sections(client: TestClient) -> None:
    created = client.post("/api/firm-offers", json={}).json()
    response = client.post(
        f"/api/firm-offers/{created['id']}/submit",
        json={
            "event_overview": {"event_name": "Robotics Expo", "venue": "Hall 4"},
            "financial_details": {
                "speaker_fee": "15000",
                "travel_expenses_type": "flat_buyout",
                "travel_buyout_amount": "2500",
            },
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "submitted"
    assert body["event_overview"]["venue"] == "Hall 4"
    assert body["financial_details"]["travel_expenses_type"] == "flat_buyout"
    assert body["financial_details"]["payment_terms"] == "Net 30 days after event"


def test_send_to_speaker_and_public_view(client: TestClient, gateway: InMemoryNotificationGateway) -> None:
    created = client.post("/api/firm-offers", json={"status": "submitted"}).json()

    bad_email = client.post(
        f"/api/firm-offers/{created['id']}/send-to-speaker",
        json={"speaker_email": "nope"},
    )
    assert bad_email.status_code == 400
    assert bad_email.json()["details"] == {"field": "speaker_email"}

    sent = client.post(
        f"/api/firm-offers/{created['id']}/send-to-speaker",
        json={"speaker_email": "alan@example.com", "speaker_name": "Alan Turing"},
    )
    assert sent.status_code == 200
    body = sent.json()
    token = created["speaker_access_token"]
    assert body["success"] is True
    assert body["speaker_review_url"] == f"https://bookings.example.com/firm-offer/{token}"

    invites = [message for message in gateway.sent if message.kind == "firm_offer_invite"]
    assert len(invites) == 1
    assert invites[0].recipient == "alan@example.com"
    assert body["speaker_review_url"] in invites[0].body

    view = client.get(f"/api/firm-offers/public/{token}")
    assert view.status_code == 200
    assert view.json()["state"] == "open"
    assert view.json()["status"] == "sent_to_speaker"
    assert "speaker_access_token" not in view.json()

    detail = client.get(f"/api/firm-offers/{created['id']}").json()
    assert detail["speaker_viewed_at"] is not None


def test_invite_failure_does_not_roll_back_send(
    client: TestClient,
    gateway: InMemoryNotificationGateway,
) -> None:
    gateway.fail_kinds.add("firm_offer_invite")
    created = client.post("/api/firm-offers", json={"status": "submitted"}).json()

    sent = client.post(
        f"/api/firm-offers/{created['id']}/send-to-speaker",
        json={"speaker_email": "alan@example.com"},
    )
    assert sent.status_code == 200
    assert sent.json()["success"] is True
    assert client.get(f"/api/firm-offers/{created['id']}").json()["status"] == "sent_to_speaker"


def test_unknown_public_token_is_not_found(client: TestClient) -> None:
    response = client.get("/api/firm-offers/public/not-a-real-token")
    assert response.status_code == 404


def test_speaker_confirm_moves_deal_to_negotiation(client: TestClient, db_session: Session) -> None:
    deal = _deal(db_session, status="proposal")
    created = client.post("/api/firm-offers", json={"deal_id": str(deal.id), "status": "submitted"}).json()
    token = created["speaker_access_token"]

    decided = client.post(f"/api/firm-offers/public/{token}/decision", json={"decision": "confirm", "notes": "Happy to"})
    assert decided.status_code == 200
    assert decided.json()["status"] == "speaker_confirmed"
    assert decided.json()["state"] == "closed"

    db_session.expire_all()
    assert db_session.get(Deal, deal.id).status == "negotiation"

    again = client.post(f"/api/firm-offers/public/{token}/decision", json={"decision": "decline"})
    assert again.status_code == 400
    assert again.json()["code"] == "invalid_state"

    edit = client.put(f"/api/firm-offers/public/{token}", json={"confirmation": {"additional_notes": "late"}})
    assert edit.status_code == 400


def test_speaker_decline_marks_open_deal_lost(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    deal = _deal(db_session, status="negotiation")
    offer = _submitted_offer(db_session, deal)

    declined = firm_offer_service.record_speaker_decision(db_session, "speaker", offer.id, "decline", now=NOW)
    assert declined.status == "declined"
    db_session.expire_all()
    assert db_session.get(Deal, deal.id).status == "lost"


def test_speaker_decision_leaves_closed_deal_alone(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    deal = _deal(db_session, status="won")
    offer = _submitted_offer(db_session, deal)

    firm_offer_service.record_speaker_decision(db_session, "speaker", offer.id, "decline", now=NOW)
    db_session.expire_all()
    assert db_session.get(Deal, deal.id).status == "won"


def test_draft_offer_cannot_be_decided(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    created, _ = firm_offer_service.create_offer(db_session, "admin-1", FirmOfferCreate(), now=NOW)
    with pytest.raises(InvalidStateError):
        firm_offer_service.record_speaker_decision(db_session, "speaker", created.id, "confirm", now=NOW)


def test_expired_hold_blocks_confirm_but_not_decline(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    offer = _submitted_offer(db_session)
    later = NOW + timedelta(days=20)

    public = firm_offer_service.resolve_by_speaker_token(db_session, offer.speaker_access_token, now=later)
    assert public.state == "hold_expired"
    assert public.message

    with pytest.raises(HoldExpiredError):
        firm_offer_service.decision_by_token(db_session, offer.speaker_access_token, "confirm", now=later)

    declined = firm_offer_service.decision_by_token(db_session, offer.speaker_access_token, "decline", now=later)
    assert declined.status == "declined"
    assert declined.state == "closed"


def test_confirmed_offer_never_expires(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    offer = _submitted_offer(db_session)
    firm_offer_service.record_speaker_decision(db_session, "speaker", offer.id, "confirm", now=NOW)

    later = firm_offer_service.get_offer(db_session, offer.id, now=NOW + timedelta(days=60))
    assert later.hold.expired is False


def test_submit_by_invalid_token_raises(db_session: Session) -> None:
    with pytest.raises(InvalidTokenError):
        firm_offer_service.submit_by_token(db_session, "bogus", FirmOfferSubmit(), now=NOW)


def test_sweep_reports_each_lapsed_hold_once(db_session: Session, gateway: InMemoryNotificationGateway) -> None:
    lapsed = _submitted_offer(db_session)
    confirmed = _submitted_offer(db_session)
    firm_offer_service.record_speaker_decision(db_session, "speaker", confirmed.id, "confirm", now=NOW)
    fresh = _submitted_offer(db_session, now=NOW + timedelta(days=10))

    later = NOW + timedelta(days=16)
    assert firm_offer_service.sweep_expired_holds(db_session, now=later) == 1
    assert firm_offer_service.sweep_expired_holds(db_session, now=later) == 0

    expired_events = [item for item in events.published_events if item["event_type"] == "booking.firm_offer.hold_expired"]
    assert [item["payload"]["firm_offer_id"] for item in expired_events] == [str(lapsed.id)]
    db_session.expire_all()
    assert db_session.get(FirmOffer, fresh.id).hold_expiry_reported_at is None
