from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


ProjectType = Literal["Workshop", "Speaking", "Consulting", "Other"]
EventClassification = Literal["local", "virtual"]


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deal_id: UUID
    project_name: str
    client_name: str
    client_email: str | None
    client_phone: str | None
    company: str | None
    project_type: ProjectType | str
    description: str | None
    status: str
    priority: str
    start_date: date | None
    deadline: date | None
    budget: Decimal | str
    spent: Decimal | str
    completion_percentage: int
    speaker_fee: Decimal | str | None
    commission_amount: Decimal | str | None
    billing_contact: dict[str, Any]
    logistics_contact: dict[str, Any]
    end_client_name: str | None
    event_name: str | None
    event_date: date | None
    event_location: str | None
    event_type: str | None
    event_classification: EventClassification | str
    requested_speaker_name: str | None
    program_topic: str | None
    audience_size: int | None
    tags: list[str]
    stage_completion: dict[str, Any]
    notes: str | None
    created_at: datetime
    updated_at: datetime
