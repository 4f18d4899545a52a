from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contract_number: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("deals.id"), nullable=True)
    firm_offer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("firm_offers.id"), nullable=True)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str] = mapped_column(String(320), nullable=False)
    client_company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_signer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_signer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    client_signer_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    speaker_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    event_title: Mapped[str] = mapped_column(String(255), nullable=False)
    event_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    event_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attendee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_terms: Mapped[str] = mapped_column(Text, nullable=False)
    additional_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    client_signing_token: Mapped[str] = mapped_column(String(64), nullable=False)
    speaker_signing_token: Mapped[str] = mapped_column(String(64), nullable=False)
    tokens_expire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    speaker_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    speaker_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    signatures: Mapped[list[ContractSignature]] = relationship(
        "app.business.contracts.models.ContractSignature",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="ContractSignature.signed_at",
    )

    __table_args__ = (
        UniqueConstraint("contract_number", name="uq_contracts_contract_number"),
        UniqueConstraint("client_signing_token", name="uq_contracts_client_signing_token"),
        UniqueConstraint("speaker_signing_token", name="uq_contracts_speaker_signing_token"),
        Index("ix_contracts_deal_id", "deal_id"),
        Index("ix_contracts_status", "status"),
    )


class ContractSignature(Base):
    __tablename__ = "contract_signatures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )
    party: Mapped[str] = mapped_column(String(16), nullable=False)
    signer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    signer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    signer_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    signature_method: Mapped[str] = mapped_column(String(16), nullable=False, default="typed")
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    contract: Mapped[Contract] = relationship("app.business.contracts.models.Contract", back_populates="signatures")

    __table_args__ = (UniqueConstraint("contract_id", "party", name="uq_contract_signatures_party"),)


class ContractVersion(Base):
    __tablename__ = "contract_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    change_summary: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("contract_id", "version", name="uq_contract_versions_version"),)
