from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ContractStatus = Literal["draft", "sent", "partially_signed", "fully_executed"]
SigningParty = Literal["client", "speaker"]
SignatureMethod = Literal["typed", "drawn"]
SigningState = Literal["ready", "already_signed", "expired"]

DEFAULT_PAYMENT_TERMS = "Net 30 days after event completion"


class SpeakerInfo(BaseModel):
    name: str | None = None
    email: str | None = None
    fee: Decimal | None = Field(default=None, gt=Decimal("0"))


class ClientSignerInfo(BaseModel):
    name: str | None = None
    email: str | None = None
    title: str | None = None


class ContractCreateRequest(BaseModel):
    deal_id: UUID | None = None
    firm_offer_id: UUID | None = None
    template_id: str | None = None
    values: dict[str, Any] | None = None
    speaker_info: SpeakerInfo | None = None
    client_signer: ClientSignerInfo | None = None
    payment_terms: str | None = None
    additional_terms: str | None = None
    send_for_signature: bool = True


class ContractPreviewMetadata(BaseModel):
    template: str
    deal_value: Decimal | str
    event_date: date | None
    speaker_name: str | None


class ContractPreviewResponse(BaseModel):
    content: str
    metadata: ContractPreviewMetadata


class ContractSignatureRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    party: SigningParty | str
    signer_name: str
    signer_email: str | None
    signer_title: str | None
    signature_method: str
    ip_address: str | None
    user_agent: str | None
    signed_at: datetime


class ContractRead(BaseModel):
    id: UUID
    contract_number: str
    title: str
    template_id: str
    deal_id: UUID | None
    firm_offer_id: UUID | None
    client_name: str
    client_email: str
    client_company: str | None
    client_signer_name: str
    client_signer_email: str
    client_signer_title: str | None
    speaker_name: str | None
    speaker_email: str | None
    speaker_fee: Decimal | str
    event_title: str
    event_date: date | None
    event_location: str | None
    event_type: str | None
    attendee_count: int | None
    total_amount: Decimal | str
    payment_terms: str
    additional_terms: str | None
    status: ContractStatus | str
    tokens_expire_at: datetime
    client_signing_url: str
    speaker_signing_url: str
    sent_at: datetime | None
    client_signed_at: datetime | None
    speaker_signed_at: datetime | None
    completed_at: datetime | None
    created_by: str
    created_at: datetime
    updated_at: datetime
    signatures: list[ContractSignatureRead] = Field(default_factory=list)


class ContractContentRead(BaseModel):
    contract_id: UUID
    contract_number: str
    version: int
    content: str


class ContractSendResponse(BaseModel):
    success: bool
    contract_id: UUID
    status: ContractStatus | str
    client_notified: bool
    speaker_notified: bool


class ContractStatusOverride(BaseModel):
    status: Literal["draft", "sent"]


class SignContractRequest(BaseModel):
    signer_name: str | None = None
    signer_email: str | None = None
    signer_title: str | None = None
    signature_data: str | None = None
    signature_method: SignatureMethod = "typed"


class ContractSigningView(BaseModel):
    contract_id: UUID
    contract_number: str
    title: str
    party: SigningParty
    status: ContractStatus | str
    state: SigningState
    can_sign: bool
    expected_signer_name: str | None
    expected_signer_email: str | None
    event_title: str
    event_date: date | None
    event_location: str | None
    total_amount: Decimal | str
    payment_terms: str
    content: str
    client_signed_at: datetime | None
    speaker_signed_at: datetime | None
