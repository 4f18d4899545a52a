from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


DealStatus = Literal["lead", "qualified", "proposal", "negotiation", "won", "lost"]
DealPriority = Literal["low", "medium", "high", "urgent"]

DEAL_STATUSES: tuple[str, ...] = ("lead", "qualified", "proposal", "negotiation", "won", "lost")
DEAL_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent")


class DealCreate(BaseModel):
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    company: str | None = None
    event_title: str | None = None
    event_date: date | None = None
    event_location: str | None = None
    event_type: str | None = None
    attendee_count: int | None = None
    budget_range: str | None = None
    deal_value: Decimal | None = None
    status: str | None = None
    priority: str | None = None
    source: str | None = None
    speaker_requested: str | None = None
    notes: str | None = None
    last_contact: date | None = None


class DealUpdate(BaseModel):
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    company: str | None = None
    event_title: str | None = None
    event_date: date | None = None
    event_location: str | None = None
    event_type: str | None = None
    attendee_count: int | None = None
    budget_range: str | None = None
    deal_value: Decimal | None = None
    status: str | None = None
    priority: str | None = None
    source: str | None = None
    speaker_requested: str | None = None
    notes: str | None = None
    last_contact: date | None = None


class DealInquiryCreate(BaseModel):
    client_name: str
    client_email: str
    client_phone: str | None = None
    company: str | None = None
    event_title: str
    event_date: date | None = None
    event_location: str | None = None
    event_type: str | None = None
    attendee_count: int | None = Field(default=None, ge=0)
    budget_range: str | None = None
    speaker_requested: str | None = None
    message: str | None = None


class DealStatusChange(BaseModel):
    status: str


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    client_name: str
    client_email: str
    client_phone: str | None
    company: str | None
    event_title: str
    event_date: date | None
    event_location: str | None
    event_type: str | None
    attendee_count: int | None
    budget_range: str | None
    deal_value: Decimal | str
    status: DealStatus | str
    priority: DealPriority | str
    source: str | None
    speaker_requested: str | None
    notes: str | None
    last_contact: date | None
    won_at: datetime | None
    lost_at: datetime | None
    created_at: datetime
    updated_at: datetime


class DealWriteResponse(DealRead):
    project_created: bool = Field(default=False, serialization_alias="projectCreated")
    project_id: UUID | None = Field(default=None, serialization_alias="projectId")
    message: str | None = None
