from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Other")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="invoicing", server_default="invoicing")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    deadline: Mapped[date | None] = mapped_column(Date(), nullable=True)
    budget: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    spent: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    speaker_fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    billing_contact: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    logistics_contact: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    end_client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    event_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_classification: Mapped[str] = mapped_column(String(16), nullable=False, default="local")
    requested_speaker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    program_topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    audience_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    stage_completion: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("deal_id", name="uq_projects_deal_id"),
        Index("ix_projects_status", "status"),
    )
