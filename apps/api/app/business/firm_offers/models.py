from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import Date, DateTime, ForeignKey, Index, JSON, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    event_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_investment: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class FirmOffer(Base):
    __tablename__ = "firm_offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    proposal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("proposals.id"), nullable=True)
    deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    speaker_access_token: Mapped[str] = mapped_column(String(64), nullable=False)
    event_overview: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    speaker_program: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    event_schedule: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    technical_requirements: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    travel_accommodation: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    additional_info: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    financial_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    confirmation: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    speaker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    speaker_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_to_speaker_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    speaker_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    speaker_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hold_expiry_reported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("proposal_id", name="uq_firm_offers_proposal_id"),
        UniqueConstraint("speaker_access_token", name="uq_firm_offers_speaker_access_token"),
        Index("ix_firm_offers_status_hold", "status", "hold_expires_at"),
        Index("ix_firm_offers_deal_id", "deal_id"),
    )
