from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


FirmOfferStatus = Literal["draft", "submitted", "sent_to_speaker", "speaker_confirmed", "declined"]
ProgramType = Literal["keynote", "fireside_chat", "panel_discussion", "workshop", "other"]
TravelExpensesType = Literal["flat_buyout", "client_books", "reimbursement"]
SpeakerDecision = Literal["confirm", "decline"]
PublicOfferState = Literal["open", "hold_expired", "closed"]

DEFAULT_OFFER_PAYMENT_TERMS = "Net 30 days after event"


class ContactInfo(BaseModel):
    name: str | None = None
    title: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None


class EventOverview(BaseModel):
    billing_contact: ContactInfo | None = None
    logistics_contact: ContactInfo | None = None
    end_client_name: str | None = None
    event_name: str | None = None
    event_date: date | None = None
    event_location: str | None = None
    event_website: str | None = None
    company_name: str | None = None
    venue: str | None = None


class SpeakerProgram(BaseModel):
    requested_speaker_name: str | None = None
    program_topic: str | None = None
    program_type: ProgramType | None = None
    audience_size: int | None = Field(default=None, ge=0)
    audience_demographics: str | None = None
    speaker_attire: str | None = None


class FinancialDetails(BaseModel):
    speaker_fee: Decimal | None = Field(default=None, ge=Decimal("0"))
    travel_expenses_type: TravelExpensesType | None = None
    travel_buyout_amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    travel_notes: str | None = None
    payment_terms: str | None = None


class Confirmation(BaseModel):
    prep_call_requested: bool | None = None
    prep_call_date_preferences: str | None = None
    additional_notes: str | None = None


class OfferSections(BaseModel):
    event_overview: EventOverview | None = None
    speaker_program: SpeakerProgram | None = None
    financial_details: FinancialDetails | None = None
    event_schedule: dict[str, Any] | None = None
    technical_requirements: dict[str, Any] | None = None
    travel_accommodation: dict[str, Any] | None = None
    additional_info: dict[str, Any] | None = None
    confirmation: Confirmation | None = None


class FirmOfferCreate(OfferSections):
    proposal_id: UUID | None = None
    deal_id: UUID | None = None
    speaker_name: str | None = None
    speaker_email: str | None = None
    hold_expires_at: datetime | None = None
    status: Literal["draft", "submitted"] = "draft"


class FirmOfferSubmit(OfferSections):
    pass


class SendToSpeakerRequest(BaseModel):
    speaker_email: str
    speaker_name: str | None = None


class SendToSpeakerResponse(BaseModel):
    success: bool
    message: str
    speaker_review_url: str
    firm_offer_id: UUID


class SpeakerDecisionRequest(BaseModel):
    decision: SpeakerDecision
    notes: str | None = None


class HoldStatus(BaseModel):
    hold_expires_at: datetime
    days_remaining: int
    expired: bool


class FirmOfferRead(BaseModel):
    id: UUID
    proposal_id: UUID | None
    deal_id: UUID | None
    status: FirmOfferStatus | str
    speaker_access_token: str
    event_overview: EventOverview
    speaker_program: SpeakerProgram
    financial_details: FinancialDetails
    event_schedule: dict[str, Any]
    technical_requirements: dict[str, Any]
    travel_accommodation: dict[str, Any]
    additional_info: dict[str, Any]
    confirmation: Confirmation
    speaker_name: str | None
    speaker_email: str | None
    speaker_notes: str | None
    created_at: datetime
    updated_at: datetime
    hold_expires_at: datetime
    submitted_at: datetime | None
    sent_to_speaker_at: datetime | None
    speaker_viewed_at: datetime | None
    speaker_response_at: datetime | None
    hold: HoldStatus


class FirmOfferPublicRead(BaseModel):
    id: UUID
    status: FirmOfferStatus | str
    state: PublicOfferState
    message: str | None = None
    event_overview: EventOverview
    speaker_program: SpeakerProgram
    financial_details: FinancialDetails
    event_schedule: dict[str, Any]
    technical_requirements: dict[str, Any]
    travel_accommodation: dict[str, Any]
    additional_info: dict[str, Any]
    confirmation: Confirmation
    speaker_name: str | None
    hold: HoldStatus
