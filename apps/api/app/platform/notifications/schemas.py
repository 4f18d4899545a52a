from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


DeliveryStatus = Literal["delivered", "failed"]


class NotificationDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    recipient: str
    cc: list[str]
    subject: str
    status: DeliveryStatus | str
    error: str | None
    entity_type: str | None
    entity_id: str | None
    backend: str
    correlation_id: str | None
    created_at: datetime


class NotificationSummaryRow(BaseModel):
    kind: str
    delivered: int = 0
    failed: int = 0


class NotificationSummary(BaseModel):
    total: int
    delivered: int
    failed: int
    by_kind: list[NotificationSummaryRow]
