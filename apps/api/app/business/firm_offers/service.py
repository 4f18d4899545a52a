from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.deals.models import Deal
from app.business.deals.service import DealService, deal_service, validate_email
from app.business.firm_offers.hold import default_hold_expiry, hold_status, is_hold_expired
from app.business.firm_offers.models import FirmOffer, Proposal
from app.business.firm_offers.schemas import (
    DEFAULT_OFFER_PAYMENT_TERMS,
    Confirmation,
    EventOverview,
    FinancialDetails,
    FirmOfferCreate,
    FirmOfferPublicRead,
    FirmOfferRead,
    FirmOfferSubmit,
    OfferSections,
    SendToSpeakerResponse,
    SpeakerProgram,
)
from app.core.config import get_settings
from app.core.database import as_utc
from app.core.errors import HoldExpiredError, InvalidStateError, NotFoundError
from app.metrics import set_expired_holds
from app.platform.notifications import NotificationService, notification_service
from app.platform.tokens import TokenSubject, token_service


logger = logging.getLogger("app.firm_offers")
tracer = trace.get_tracer("app.firm_offers")

TERMINAL_STATUSES = {"speaker_confirmed", "declined"}
SUBMITTABLE_STATUSES = {"draft", "submitted"}
SECTION_FIELDS = (
    "event_overview",
    "speaker_program",
    "financial_details",
    "event_schedule",
    "technical_requirements",
    "travel_accommodation",
    "additional_info",
    "confirmation",
)
PROGRAM_TYPE_BY_EVENT_TYPE = {
    "keynote": "keynote",
    "workshop": "workshop",
    "panel": "panel_discussion",
    "panel discussion": "panel_discussion",
    "fireside chat": "fireside_chat",
}
HOLD_EXPIRED_PUBLIC_MESSAGE = "This hold has expired. Please contact us to request a new quote."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def review_url(token: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/firm-offer/{token}"


def _section_dump(value: BaseModel | dict[str, Any] | None) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    return {key: item for key, item in value.items() if item is not None}


def _merge_sections(current: dict[str, dict[str, Any]], update: OfferSections) -> dict[str, dict[str, Any]]:
    merged = {name: dict(current.get(name) or {}) for name in SECTION_FIELDS}
    for name in SECTION_FIELDS:
        merged[name].update(_section_dump(getattr(update, name)))
    return merged


def _resolve_access_token(session: Session, token: str, now: datetime) -> TokenSubject | None:
    offer = session.scalar(select(FirmOffer).where(FirmOffer.speaker_access_token == token))
    if offer is None:
        return None
    return TokenSubject(kind="firm_offer_access", subject_id=str(offer.id), scheme="opaque")


token_service.register_resolver("firm_offer_access", _resolve_access_token)


@dataclass(slots=True)
class FirmOfferService:
    deals: DealService = field(default_factory=lambda: deal_service)
    notifications: NotificationService = field(default_factory=lambda: notification_service)

    def create_offer(
        self,
        session: Session,
        actor_user_id: str,
        dto: FirmOfferCreate,
        *,
        now: datetime | None = None,
    ) -> tuple[FirmOfferRead, bool]:
        """Returns ``(offer, created)``; a proposal keeps the offer it already has."""

        current = now or utcnow()
        with tracer.start_as_current_span("firm_offers.create") as span:
            proposal: Proposal | None = None
            if dto.proposal_id is not None:
                span.set_attribute("proposal_id", str(dto.proposal_id))
                existing = self._find_by_proposal(session, dto.proposal_id)
                if existing is not None:
                    span.set_attribute("firm_offer.reused", True)
                    return self._to_read(existing, current), False
                proposal = session.get(Proposal, dto.proposal_id)
                if proposal is None:
                    raise NotFoundError("proposal not found")

            deal_id = dto.deal_id or (proposal.deal_id if proposal is not None else None)
            deal: Deal | None = None
            if deal_id is not None:
                deal = session.get(Deal, deal_id)
                if deal is None:
                    raise NotFoundError("deal not found")
            if dto.speaker_email:
                validate_email(dto.speaker_email, "speaker_email")

            sections = _merge_sections(self._seed_sections(deal, proposal), dto)
            sections["financial_details"].setdefault("payment_terms", DEFAULT_OFFER_PAYMENT_TERMS)
            offer_id = uuid.uuid4()
            offer = FirmOffer(
                id=offer_id,
                proposal_id=dto.proposal_id,
                deal_id=deal_id,
                status=dto.status,
                speaker_access_token=token_service.issue("firm_offer_access", str(offer_id), now=current).value,
                speaker_name=dto.speaker_name or sections["speaker_program"].get("requested_speaker_name"),
                speaker_email=dto.speaker_email,
                created_at=current,
                updated_at=current,
                hold_expires_at=dto.hold_expires_at or default_hold_expiry(current),
                submitted_at=current if dto.status == "submitted" else None,
                **sections,
            )
            session.add(offer)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if dto.proposal_id is None:
                    raise
                # lost the race for this proposal; hand back the winner
                existing = self._find_by_proposal(session, dto.proposal_id)
                if existing is None:
                    raise
                return self._to_read(existing, current), False
            session.refresh(offer)
            span.set_attribute("firm_offer_id", str(offer.id))

            created = self._to_read(offer, current)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="firm_offer",
                entity_id=str(offer.id),
                action="create",
                before=None,
                after=created.model_dump(mode="json", exclude={"speaker_access_token"}),
            )
            events.publish(
                events.build_envelope(
                    "booking.firm_offer.created",
                    actor_user_id,
                    {
                        "firm_offer_id": str(offer.id),
                        "proposal_id": str(offer.proposal_id) if offer.proposal_id else None,
                        "deal_id": str(offer.deal_id) if offer.deal_id else None,
                        "status": offer.status,
                    },
                )
            )
            logger.info("firm_offer_created", extra={"firm_offer_id": str(offer.id), "status": offer.status})
            if offer.status == "submitted":
                self._notify_submitted(session, offer)
            return created, True

    def get_offer(self, session: Session, offer_id: uuid.UUID, *, now: datetime | None = None) -> FirmOfferRead:
        return self._to_read(self._get(session, offer_id), now or utcnow())

    def list_offers(
        self,
        session: Session,
        *,
        status_filter: str | None = None,
        deal_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> list[FirmOfferRead]:
        current = now or utcnow()
        stmt = select(FirmOffer)
        if status_filter:
            stmt = stmt.where(FirmOffer.status == status_filter)
        if deal_id is not None:
            stmt = stmt.where(FirmOffer.deal_id == deal_id)
        rows = session.scalars(stmt.order_by(FirmOffer.created_at.desc())).all()
        return [self._to_read(row, current) for row in rows]

    def submit_essential_info(
        self,
        session: Session,
        actor_user_id: str,
        offer_id: uuid.UUID,
        dto: FirmOfferSubmit,
        *,
        now: datetime | None = None,
    ) -> FirmOfferRead:
        current = now or utcnow()
        offer = self._get(session, offer_id)
        with tracer.start_as_current_span("firm_offers.submit") as span:
            span.set_attribute("firm_offer_id", str(offer.id))
            if is_hold_expired(offer.hold_expires_at, offer.status, current):
                logger.info("firm_offer_hold_expired", extra={"firm_offer_id": str(offer.id), "status": offer.status})
                raise HoldExpiredError(details={"hold_expires_at": as_utc(offer.hold_expires_at).isoformat()})
            if offer.status not in SUBMITTABLE_STATUSES:
                raise InvalidStateError(
                    "offer can no longer be edited",
                    details={"status": offer.status},
                )

            before = self._to_read(offer, current).model_dump(mode="json", exclude={"speaker_access_token"})
            previous_status = offer.status
            current_sections = {name: getattr(offer, name) for name in SECTION_FIELDS}
            for name, value in _merge_sections(current_sections, dto).items():
                setattr(offer, name, value)
            offer.status = "submitted"
            offer.submitted_at = current
            offer.updated_at = current
            session.add(offer)
            session.commit()
            session.refresh(offer)

            updated = self._to_read(offer, current)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="firm_offer",
                entity_id=str(offer.id),
                action="submit",
                before=before,
                after=updated.model_dump(mode="json", exclude={"speaker_access_token"}),
            )
            events.publish(
                events.build_envelope(
                    "booking.firm_offer.submitted",
                    actor_user_id,
                    {"firm_offer_id": str(offer.id), "submitted_at": current.isoformat()},
                )
            )
            if previous_status == "draft":
                self._notify_submitted(session, offer)
            return updated

    def submit_by_token(
        self,
        session: Session,
        token: str,
        dto: FirmOfferSubmit,
        *,
        now: datetime | None = None,
    ) -> FirmOfferPublicRead:
        current = now or utcnow()
        subject = self._subject_for_token(session, token, current)
        offer_id = uuid.UUID(subject.subject_id)
        self.submit_essential_info(session, "client", offer_id, dto, now=current)
        return self._to_public(self._get(session, offer_id), current)

    def send_to_speaker(
        self,
        session: Session,
        actor_user_id: str,
        offer_id: uuid.UUID,
        speaker_email: str,
        speaker_name: str | None,
        *,
        now: datetime | None = None,
    ) -> SendToSpeakerResponse:
        current = now or utcnow()
        offer = self._get(session, offer_id)
        validate_email(speaker_email, "speaker_email")
        with tracer.start_as_current_span("firm_offers.send_to_speaker") as span:
            span.set_attribute("firm_offer_id", str(offer.id))
            if not offer.speaker_access_token:
                raise InvalidStateError("offer has no speaker access token")
            if offer.status in TERMINAL_STATUSES:
                raise InvalidStateError("speaker already responded to this offer", details={"status": offer.status})
            if is_hold_expired(offer.hold_expires_at, offer.status, current):
                raise HoldExpiredError(details={"hold_expires_at": as_utc(offer.hold_expires_at).isoformat()})

            previous_status = offer.status
            offer.status = "sent_to_speaker"
            offer.sent_to_speaker_at = current
            offer.speaker_email = speaker_email.strip()
            offer.speaker_name = speaker_name or offer.speaker_name
            offer.updated_at = current
            session.add(offer)
            session.commit()
            session.refresh(offer)

            url = review_url(offer.speaker_access_token)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="firm_offer",
                entity_id=str(offer.id),
                action="send_to_speaker",
                before={"status": previous_status},
                after={"status": offer.status, "speaker_email": offer.speaker_email},
            )
            events.publish(
                events.build_envelope(
                    "booking.firm_offer.sent_to_speaker",
                    actor_user_id,
                    {"firm_offer_id": str(offer.id), "speaker_email": offer.speaker_email},
                )
            )

            overview = offer.event_overview or {}
            program = offer.speaker_program or {}
            delivered = self.notifications.notify(
                session,
                "firm_offer_invite",
                {
                    "speaker_name": offer.speaker_name,
                    "event_name": overview.get("event_name"),
                    "company_name": overview.get("company_name"),
                    "event_date": overview.get("event_date"),
                    "event_location": overview.get("event_location"),
                    "program_type": program.get("program_type"),
                    "speaker_fee": (offer.financial_details or {}).get("speaker_fee"),
                    "review_url": url,
                },
                offer.speaker_email,
                entity_type="firm_offer",
                entity_id=str(offer.id),
            )
            if not delivered:
                logger.warning("firm_offer_invite_not_delivered", extra={"firm_offer_id": str(offer.id)})
            return SendToSpeakerResponse(
                success=True,
                message="Firm offer sent to speaker" if delivered else "Firm offer marked as sent; invitation email failed",
                speaker_review_url=url,
                firm_offer_id=offer.id,
            )

    def resolve_by_speaker_token(
        self,
        session: Session,
        token: str,
        *,
        now: datetime | None = None,
    ) -> FirmOfferPublicRead:
        current = now or utcnow()
        subject = token_service.validate(token, "firm_offer_access", session=session, now=current)
        if subject is None:
            raise NotFoundError("firm offer not found")
        offer = self._get(session, uuid.UUID(subject.subject_id))
        if offer.status == "sent_to_speaker" and offer.speaker_viewed_at is None:
            offer.speaker_viewed_at = current
            session.add(offer)
            session.commit()
            session.refresh(offer)
        return self._to_public(offer, current)

    def record_speaker_decision(
        self,
        session: Session,
        actor_user_id: str,
        offer_id: uuid.UUID,
        decision: str,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> FirmOfferRead:
        current = now or utcnow()
        offer = self._get(session, offer_id)
        with tracer.start_as_current_span("firm_offers.speaker_decision") as span:
            span.set_attribute("firm_offer_id", str(offer.id))
            span.set_attribute("firm_offer.decision", decision)
            if offer.status in TERMINAL_STATUSES:
                raise InvalidStateError("speaker already responded to this offer", details={"status": offer.status})
            if offer.status == "draft":
                raise InvalidStateError("offer has not been submitted yet", details={"status": offer.status})
            if decision == "confirm" and is_hold_expired(offer.hold_expires_at, offer.status, current):
                raise HoldExpiredError(details={"hold_expires_at": as_utc(offer.hold_expires_at).isoformat()})

            previous_status = offer.status
            offer.status = "speaker_confirmed" if decision == "confirm" else "declined"
            offer.speaker_response_at = current
            offer.speaker_notes = notes
            offer.updated_at = current
            session.add(offer)
            session.commit()
            session.refresh(offer)

            audit.record(
                actor_user_id=actor_user_id,
                entity_type="firm_offer",
                entity_id=str(offer.id),
                action=f"speaker_{decision}",
                before={"status": previous_status},
                after={"status": offer.status, "speaker_notes": notes},
            )
            events.publish(
                events.build_envelope(
                    "booking.firm_offer.speaker_decided",
                    actor_user_id,
                    {"firm_offer_id": str(offer.id), "decision": decision, "deal_id": str(offer.deal_id) if offer.deal_id else None},
                )
            )
            if offer.deal_id is not None:
                try:
                    self.deals.apply_speaker_decision(session, actor_user_id, offer.deal_id, decision)
                except Exception as exc:
                    session.rollback()
                    logger.exception(
                        "deal_speaker_decision_failed",
                        extra={"firm_offer_id": str(offer.id), "deal_id": str(offer.deal_id), "error": str(exc)[:500]},
                    )
            return self._to_read(offer, current)

    def decision_by_token(
        self,
        session: Session,
        token: str,
        decision: str,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> FirmOfferPublicRead:
        current = now or utcnow()
        subject = self._subject_for_token(session, token, current)
        offer_id = uuid.UUID(subject.subject_id)
        self.record_speaker_decision(session, "speaker", offer_id, decision, notes, now=current)
        return self._to_public(self._get(session, offer_id), current)

    def sweep_expired_holds(self, session: Session, *, now: datetime | None = None) -> int:
        """Reports newly lapsed holds once each and refreshes the expired-hold gauge."""

        current = now or utcnow()
        with tracer.start_as_current_span("firm_offers.sweep_expired_holds") as span:
            candidates = session.scalars(
                select(FirmOffer).where(
                    FirmOffer.status.not_in(TERMINAL_STATUSES),
                    FirmOffer.hold_expires_at < current,
                )
            ).all()
            expired = [offer for offer in candidates if is_hold_expired(offer.hold_expires_at, offer.status, current)]
            newly_reported = [offer for offer in expired if offer.hold_expiry_reported_at is None]
            for offer in newly_reported:
                offer.hold_expiry_reported_at = current
                session.add(offer)
            session.commit()

            for offer in newly_reported:
                events.publish(
                    events.build_envelope(
                        "booking.firm_offer.hold_expired",
                        "system",
                        {
                            "firm_offer_id": str(offer.id),
                            "deal_id": str(offer.deal_id) if offer.deal_id else None,
                            "hold_expires_at": as_utc(offer.hold_expires_at).isoformat(),
                        },
                    )
                )
            set_expired_holds(len(expired))
            span.set_attribute("firm_offers.expired", len(expired))
            logger.info("firm_offer_hold_sweep", extra={"count": len(newly_reported), "status": "completed"})
            return len(newly_reported)

    def _subject_for_token(self, session: Session, token: str, now: datetime | None) -> TokenSubject:
        return token_service.require(token, "firm_offer_access", session=session, now=now)

    def _notify_submitted(self, session: Session, offer: FirmOffer) -> None:
        overview = offer.event_overview or {}
        self.notifications.notify(
            session,
            "firm_offer_submitted",
            {
                "firm_offer_id": str(offer.id),
                "event_name": overview.get("event_name"),
                "company_name": overview.get("company_name"),
            },
            get_settings().admin_notification_email,
            entity_type="firm_offer",
            entity_id=str(offer.id),
        )

    def _seed_sections(self, deal: Deal | None, proposal: Proposal | None) -> dict[str, dict[str, Any]]:
        sections: dict[str, dict[str, Any]] = {name: {} for name in SECTION_FIELDS}
        if deal is not None:
            sections["event_overview"].update(
                {
                    "event_name": deal.event_title,
                    "event_date": deal.event_date.isoformat() if deal.event_date else None,
                    "event_location": deal.event_location,
                    "company_name": deal.company,
                    "end_client_name": deal.company,
                    "billing_contact": {"name": deal.client_name, "email": deal.client_email, "phone": deal.client_phone},
                }
            )
            sections["speaker_program"].update(
                {
                    "requested_speaker_name": deal.speaker_requested,
                    "program_type": PROGRAM_TYPE_BY_EVENT_TYPE.get((deal.event_type or "").strip().lower()),
                    "audience_size": deal.attendee_count,
                }
            )
            sections["financial_details"]["speaker_fee"] = str(deal.deal_value) if deal.deal_value else None
        if proposal is not None:
            sections["event_overview"].update(
                {
                    "event_name": proposal.event_title or proposal.title,
                    "event_date": proposal.event_date.isoformat() if proposal.event_date else None,
                    "event_location": proposal.event_location,
                    "company_name": proposal.client_company,
                    "end_client_name": proposal.client_company,
                    "billing_contact": {"name": proposal.client_name, "email": proposal.client_email},
                }
            )
            if proposal.speaker_name:
                sections["speaker_program"]["requested_speaker_name"] = proposal.speaker_name
            if proposal.total_investment is not None:
                sections["financial_details"]["speaker_fee"] = str(proposal.total_investment)
        return {
            name: {key: value for key, value in section.items() if value is not None}
            for name, section in sections.items()
        }

    def _find_by_proposal(self, session: Session, proposal_id: uuid.UUID) -> FirmOffer | None:
        return session.scalar(select(FirmOffer).where(FirmOffer.proposal_id == proposal_id))

    def _get(self, session: Session, offer_id: uuid.UUID) -> FirmOffer:
        offer = session.get(FirmOffer, offer_id)
        if offer is None:
            raise NotFoundError("firm offer not found")
        return offer

    def _sections(self, offer: FirmOffer) -> dict[str, Any]:
        return {
            "event_overview": EventOverview.model_validate(offer.event_overview or {}),
            "speaker_program": SpeakerProgram.model_validate(offer.speaker_program or {}),
            "financial_details": FinancialDetails.model_validate(offer.financial_details or {}),
            "event_schedule": offer.event_schedule or {},
            "technical_requirements": offer.technical_requirements or {},
            "travel_accommodation": offer.travel_accommodation or {},
            "additional_info": offer.additional_info or {},
            "confirmation": Confirmation.model_validate(offer.confirmation or {}),
        }

    def _to_read(self, offer: FirmOffer, now: datetime) -> FirmOfferRead:
        return FirmOfferRead(
            id=offer.id,
            proposal_id=offer.proposal_id,
            deal_id=offer.deal_id,
            status=offer.status,
            speaker_access_token=offer.speaker_access_token,
            speaker_name=offer.speaker_name,
            speaker_email=offer.speaker_email,
            speaker_notes=offer.speaker_notes,
            created_at=offer.created_at,
            updated_at=offer.updated_at,
            hold_expires_at=offer.hold_expires_at,
            submitted_at=offer.submitted_at,
            sent_to_speaker_at=offer.sent_to_speaker_at,
            speaker_viewed_at=offer.speaker_viewed_at,
            speaker_response_at=offer.speaker_response_at,
            hold=hold_status(offer.hold_expires_at, offer.status, now),
            **self._sections(offer),
        )

    def _to_public(self, offer: FirmOffer, now: datetime) -> FirmOfferPublicRead:
        hold = hold_status(offer.hold_expires_at, offer.status, now)
        if offer.status in TERMINAL_STATUSES:
            state, message = "closed", None
        elif hold.expired:
            state, message = "hold_expired", HOLD_EXPIRED_PUBLIC_MESSAGE
        else:
            state, message = "open", None
        return FirmOfferPublicRead(
            id=offer.id,
            status=offer.status,
            state=state,
            message=message,
            speaker_name=offer.speaker_name,
            hold=hold,
            **self._sections(offer),
        )


firm_offer_service = FirmOfferService()
