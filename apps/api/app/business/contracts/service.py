from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from opentelemetry import trace
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app import audit, events
from app.business.contracts import templates
from app.business.contracts.models import Contract, ContractSignature, ContractVersion
from app.business.contracts.schemas import (
    DEFAULT_PAYMENT_TERMS,
    ClientSignerInfo,
    ContractContentRead,
    ContractPreviewMetadata,
    ContractPreviewResponse,
    ContractRead,
    ContractSendResponse,
    ContractSignatureRead,
    ContractSigningView,
    SignContractRequest,
    SpeakerInfo,
)
from app.business.deals.models import Deal
from app.business.deals.service import DealService, deal_service, validate_email
from app.business.firm_offers.models import FirmOffer
from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.database import as_utc
from app.core.errors import InvalidStateError, InvalidTokenError, NotFoundError, ValidationError
from app.metrics import observe_contract_signature
from app.platform.notifications import NotificationService, notification_service
from app.platform.tokens import IssuedToken, TokenSubject, token_service


logger = logging.getLogger("app.contracts")
tracer = trace.get_tracer("app.contracts")

PARTIES = ("client", "speaker")
CONTRACT_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
CONTRACT_NUMBER_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_contract_number(now: datetime) -> str:
    suffix = "".join(secrets.choice(CONTRACT_NUMBER_ALPHABET) for _ in range(9))
    return f"CNT-{now.year}-{suffix}"


def signing_url(token: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/contract/sign/{token}"


def derive_status(client_signed_at: datetime | None, speaker_signed_at: datetime | None, sent_at: datetime | None) -> str:
    """Contract status as a pure function of the two signature slots."""

    signed = (client_signed_at is not None) + (speaker_signed_at is not None)
    if signed == 2:
        return "fully_executed"
    if signed == 1:
        return "partially_signed"
    return "sent" if sent_at is not None else "draft"


@dataclass(frozen=True, slots=True)
class DealShape:
    """The deal fields a contract snapshot reads.

    Template-based contracts fill one from free-form values without a deal row.
    """

    id: uuid.UUID | None
    client_name: str | None
    client_email: str | None
    company: str | None
    event_title: str | None
    event_date: date | None
    event_location: str | None
    event_type: str | None
    attendee_count: int | None
    deal_value: Decimal
    speaker_requested: str | None
    status: str

    @classmethod
    def from_deal(cls, deal: Deal) -> DealShape:
        return cls(
            id=deal.id,
            client_name=deal.client_name,
            client_email=deal.client_email,
            company=deal.company,
            event_title=deal.event_title,
            event_date=deal.event_date,
            event_location=deal.event_location,
            event_type=deal.event_type,
            attendee_count=deal.attendee_count,
            deal_value=Decimal(deal.deal_value or 0),
            speaker_requested=deal.speaker_requested,
            status=deal.status,
        )

    @classmethod
    def from_template_values(cls, values: dict[str, Any], today: date) -> DealShape:
        return cls(
            id=None,
            client_name=values.get("client_contact_name") or values.get("client_signer_name") or values.get("client_name"),
            client_email=values.get("client_email") or values.get("client_signer_email"),
            company=values.get("client_company") or values.get("client_name"),
            event_title=values.get("event_title") or values.get("event_name"),
            event_date=_parse_date(values.get("event_date"), "event_date") or today,
            event_location=values.get("event_location") or "TBD",
            event_type=values.get("event_type") or "conference",
            attendee_count=_parse_int(values.get("attendee_count"), "attendee_count"),
            deal_value=_parse_amount(values.get("speaker_fee"), "speaker_fee"),
            speaker_requested=values.get("speaker_name"),
            status="won",
        )


def _parse_date(value: Any, field_name: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date", field=field_name)


def _parse_int(value: Any, field_name: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a whole number", field=field_name)


def _parse_amount(value: Any, field_name: str) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number", field=field_name)
    return amount


@dataclass(slots=True)
class ContractSnapshot:
    template_id: str
    title: str
    deal_id: uuid.UUID | None
    firm_offer_id: uuid.UUID | None
    client_name: str
    client_email: str
    client_company: str | None
    client_signer_name: str
    client_signer_email: str
    client_signer_title: str | None
    speaker_name: str | None
    speaker_email: str | None
    speaker_fee: Decimal
    event_title: str
    event_date: date | None
    event_location: str | None
    event_type: str | None
    attendee_count: int | None
    total_amount: Decimal
    payment_terms: str
    additional_terms: str | None

    def variables(self, contract_number: str, agreement_date: date) -> dict[str, Any]:
        return {
            "contract_number": contract_number,
            "agreement_date": agreement_date.strftime("%B %d, %Y"),
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_company": self.client_company or self.client_name,
            "client_signer_name": self.client_signer_name,
            "client_signer_title": self.client_signer_title or "Authorized Signatory",
            "speaker_name": self.speaker_name or "Speaker to be confirmed",
            "event_title": self.event_title,
            "event_date": self.event_date.strftime("%B %d, %Y") if self.event_date else None,
            "event_location": self.event_location,
            "event_type": self.event_type,
            "attendee_count": self.attendee_count,
            "speaker_fee": f"${self.speaker_fee:,.2f}",
            "total_amount": f"${self.total_amount:,.2f}",
            "payment_terms": self.payment_terms,
            "additional_terms": self.additional_terms or "None.",
        }

    def render(self, contract_number: str, agreement_date: date) -> str:
        return templates.render(self.template_id, self.title, self.variables(contract_number, agreement_date))


def _resolve_signing_token(session: Session, token: str, now: datetime) -> TokenSubject | None:
    contract = session.scalar(
        select(Contract)
        .where(or_(Contract.client_signing_token == token, Contract.speaker_signing_token == token))
        .execution_options(populate_existing=True)
    )
    if contract is None:
        return None
    party = "client" if contract.client_signing_token == token else "speaker"
    expires_at = as_utc(contract.tokens_expire_at)
    if expires_at is not None and as_utc(now) >= expires_at:
        return None
    # single use: a slot that is already signed no longer authorizes anything
    if getattr(contract, f"{party}_signed_at") is not None:
        return None
    return TokenSubject(
        kind="contract_signing",
        subject_id=str(contract.id),
        scheme="opaque",
        party=party,
        expires_at=expires_at,
    )


token_service.register_resolver("contract_signing", _resolve_signing_token)


@dataclass(slots=True)
class ContractService:
    deals: DealService = field(default_factory=lambda: deal_service)
    notifications: NotificationService = field(default_factory=lambda: notification_service)

    def preview_content(
        self,
        session: Session,
        deal_id: uuid.UUID,
        *,
        speaker_info: SpeakerInfo | None = None,
        payment_terms: str | None = None,
        additional_terms: str | None = None,
        client_signer: ClientSignerInfo | None = None,
        template_id: str | None = None,
        firm_offer_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> ContractPreviewResponse:
        current = now or utcnow()
        deal = session.get(Deal, deal_id)
        if deal is None:
            raise NotFoundError("deal not found")
        snapshot = self._build_snapshot(
            DealShape.from_deal(deal),
            speaker_info=speaker_info,
            client_signer=client_signer,
            payment_terms=payment_terms,
            additional_terms=additional_terms,
            template_id=template_id,
            firm_offer=self._firm_offer(session, firm_offer_id),
        )
        content = snapshot.render(generate_contract_number(current), current.date()) + templates.DRAFT_FOOTER
        return ContractPreviewResponse(
            content=content,
            metadata=ContractPreviewMetadata(
                template=snapshot.template_id,
                deal_value=deal.deal_value,
                event_date=snapshot.event_date,
                speaker_name=snapshot.speaker_name,
            ),
        )

    def create_from_deal(
        self,
        session: Session,
        actor_user_id: str,
        deal_id: uuid.UUID,
        *,
        speaker_info: SpeakerInfo | None = None,
        additional_terms: str | None = None,
        client_signer: ClientSignerInfo | None = None,
        payment_terms: str | None = None,
        template_id: str | None = None,
        firm_offer_id: uuid.UUID | None = None,
        send_for_signature: bool = True,
        now: datetime | None = None,
    ) -> ContractRead:
        current = now or utcnow()
        with tracer.start_as_current_span("contracts.create_from_deal") as span:
            span.set_attribute("deal_id", str(deal_id))
            deal = self.deals.require_won(session, deal_id)
            firm_offer = self._firm_offer(session, firm_offer_id)
            if firm_offer is not None and firm_offer.status != "speaker_confirmed":
                raise InvalidStateError(
                    "firm offer must be confirmed by the speaker",
                    details={"status": firm_offer.status},
                )
            snapshot = self._build_snapshot(
                DealShape.from_deal(deal),
                speaker_info=speaker_info,
                client_signer=client_signer,
                payment_terms=payment_terms,
                additional_terms=additional_terms,
                template_id=template_id,
                firm_offer=firm_offer,
            )
            return self._persist(session, actor_user_id, snapshot, send_for_signature, current)

    def create_from_template(
        self,
        session: Session,
        actor_user_id: str,
        template_id: str,
        values: dict[str, Any],
        *,
        send_for_signature: bool = True,
        now: datetime | None = None,
    ) -> ContractRead:
        current = now or utcnow()
        templates.get_template(template_id)
        with tracer.start_as_current_span("contracts.create_from_template") as span:
            span.set_attribute("contract.template_id", template_id)
            shape = DealShape.from_template_values(values, current.date())
            snapshot = self._build_snapshot(
                shape,
                speaker_info=SpeakerInfo(
                    name=values.get("speaker_name"),
                    email=values.get("speaker_email"),
                ),
                client_signer=ClientSignerInfo(
                    name=values.get("client_signer_name"),
                    email=values.get("client_signer_email"),
                    title=values.get("client_signer_title"),
                ),
                payment_terms=values.get("payment_terms"),
                additional_terms=values.get("additional_terms"),
                template_id=template_id,
                firm_offer=None,
            )
            return self._persist(session, actor_user_id, snapshot, send_for_signature, current)

    def send_for_signature(
        self,
        session: Session,
        actor_user_id: str,
        contract_id: uuid.UUID,
        *,
        now: datetime | None = None,
    ) -> ContractSendResponse:
        current = now or utcnow()
        contract = self._get(session, contract_id)
        if contract.status == "fully_executed":
            raise InvalidStateError("contract is already fully executed")
        if as_utc(current) >= as_utc(contract.tokens_expire_at):
            raise InvalidStateError("signing links have expired; issue a new contract")
        client_notified, speaker_notified = self._dispatch_signing_requests(session, actor_user_id, contract, current)
        return ContractSendResponse(
            success=True,
            contract_id=contract.id,
            status=contract.status,
            client_notified=client_notified,
            speaker_notified=speaker_notified,
        )

    def record_signature(
        self,
        session: Session,
        contract_id: uuid.UUID,
        party: str,
        token: str,
        dto: SignContractRequest,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> ContractRead:
        current = now or utcnow()
        if party not in PARTIES:
            raise ValidationError("party must be client or speaker", field="party")
        if not dto.signer_name or not dto.signer_name.strip():
            raise ValidationError("signer_name is required", field="signer_name")

        with tracer.start_as_current_span("contracts.record_signature") as span:
            span.set_attribute("contract_id", str(contract_id))
            span.set_attribute("contract.party", party)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            self._get(session, contract_id)
            subject = token_service.validate(token, "contract_signing", session=session, now=current)
            if subject is None or subject.subject_id != str(contract_id) or subject.party != party:
                raise InvalidTokenError()

            if not self._claim_signature(
                session,
                contract_id,
                party,
                token,
                dto,
                ip_address=ip_address,
                user_agent=user_agent,
                now=current,
            ):
                raise InvalidTokenError()

            observe_contract_signature(party)
            completed = self._settle_status(session, contract_id, current)
            contract = self._get(session, contract_id)
            span.set_attribute("contract.status", contract.status)

            audit.record(
                actor_user_id=f"{party}:{dto.signer_email or dto.signer_name}",
                entity_type="contract",
                entity_id=str(contract.id),
                action=f"sign_{party}",
                before=None,
                after={"status": contract.status, "party": party, "signer_name": dto.signer_name},
            )
            events.publish(
                events.build_envelope(
                    "booking.contract.signed",
                    party,
                    {"contract_id": str(contract.id), "party": party, "status": contract.status},
                )
            )
            logger.info(
                "contract_signed",
                extra={"contract_id": str(contract.id), "party": party, "status": contract.status},
            )
            if completed:
                self._on_completed(session, contract)
            return self._to_read(contract)

    def sign_by_token(
        self,
        session: Session,
        token: str,
        dto: SignContractRequest,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> ContractRead:
        current = now or utcnow()
        subject = token_service.require(token, "contract_signing", session=session, now=current)
        return self.record_signature(
            session,
            uuid.UUID(subject.subject_id),
            subject.party or "",
            token,
            dto,
            ip_address=ip_address,
            user_agent=user_agent,
            now=current,
        )

    def signing_view(self, session: Session, token: str, *, now: datetime | None = None) -> ContractSigningView:
        current = now or utcnow()
        contract = self._find_by_token(session, token)
        if contract is None:
            raise InvalidTokenError()
        party = "client" if contract.client_signing_token == token else "speaker"
        subject = token_service.validate(token, "contract_signing", session=session, now=current)
        if getattr(contract, f"{party}_signed_at") is not None:
            state = "already_signed"
        elif subject is None:
            state = "expired"
        else:
            state = "ready"
        return ContractSigningView(
            contract_id=contract.id,
            contract_number=contract.contract_number,
            title=contract.title,
            party=party,
            status=contract.status,
            state=state,
            can_sign=state == "ready",
            expected_signer_name=contract.client_signer_name if party == "client" else contract.speaker_name,
            expected_signer_email=contract.client_signer_email if party == "client" else contract.speaker_email,
            event_title=contract.event_title,
            event_date=contract.event_date,
            event_location=contract.event_location,
            total_amount=contract.total_amount,
            payment_terms=contract.payment_terms,
            content=contract.content,
            client_signed_at=contract.client_signed_at,
            speaker_signed_at=contract.speaker_signed_at,
        )

    def override_status(
        self,
        session: Session,
        actor_user_id: str,
        contract_id: uuid.UUID,
        new_status: str,
        *,
        now: datetime | None = None,
    ) -> ContractRead:
        current = now or utcnow()
        contract = self._get(session, contract_id)
        if new_status not in ("draft", "sent"):
            raise ValidationError("status override is limited to draft or sent", field="status")
        if contract.client_signed_at is not None or contract.speaker_signed_at is not None:
            raise InvalidStateError("signed contracts derive their status from signatures", details={"status": contract.status})

        previous_status = contract.status
        contract.sent_at = (contract.sent_at or current) if new_status == "sent" else None
        contract.status = derive_status(None, None, contract.sent_at)
        contract.updated_at = current
        session.add(contract)
        session.commit()
        session.refresh(contract)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="contract",
            entity_id=str(contract.id),
            action="override_status",
            before={"status": previous_status},
            after={"status": contract.status},
        )
        return self._to_read(contract)

    def get_contract(self, session: Session, contract_id: uuid.UUID) -> ContractRead:
        return self._to_read(self._get(session, contract_id))

    def list_contracts(
        self,
        session: Session,
        *,
        status_filter: str | None = None,
        deal_id: uuid.UUID | None = None,
    ) -> list[ContractRead]:
        stmt = select(Contract).options(selectinload(Contract.signatures))
        if status_filter:
            stmt = stmt.where(Contract.status == status_filter)
        if deal_id is not None:
            stmt = stmt.where(Contract.deal_id == deal_id)
        rows = session.scalars(stmt.order_by(Contract.created_at.desc())).all()
        return [self._to_read(row) for row in rows]

    def get_content(self, session: Session, contract_id: uuid.UUID) -> ContractContentRead:
        contract = self._get(session, contract_id)
        version = session.scalar(
            select(ContractVersion)
            .where(ContractVersion.contract_id == contract.id)
            .order_by(ContractVersion.version.desc())
            .limit(1)
        )
        return ContractContentRead(
            contract_id=contract.id,
            contract_number=contract.contract_number,
            version=version.version if version is not None else 1,
            content=version.content if version is not None else contract.content,
        )

    def _build_snapshot(
        self,
        shape: DealShape,
        *,
        speaker_info: SpeakerInfo | None,
        client_signer: ClientSignerInfo | None,
        payment_terms: str | None,
        additional_terms: str | None,
        template_id: str | None,
        firm_offer: FirmOffer | None,
    ) -> ContractSnapshot:
        speaker = speaker_info or SpeakerInfo()
        signer = client_signer or ClientSignerInfo()
        financial = (firm_offer.financial_details or {}) if firm_offer is not None else {}

        speaker_fee = speaker.fee
        if speaker_fee is None and financial.get("speaker_fee") not in (None, ""):
            speaker_fee = _parse_amount(financial.get("speaker_fee"), "speaker_fee")
        if speaker_fee is None:
            speaker_fee = shape.deal_value
        if speaker_fee is None or speaker_fee <= 0:
            raise ValidationError("speaker fee must be greater than zero", field="speaker_fee")
        total_amount = speaker_fee
        if financial.get("travel_expenses_type") == "flat_buyout" and financial.get("travel_buyout_amount"):
            total_amount = speaker_fee + _parse_amount(financial.get("travel_buyout_amount"), "travel_buyout_amount")

        for name in ("client_name", "client_email", "event_title", "event_location"):
            value = getattr(shape, name)
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} is required", field=name)
        if shape.event_date is None:
            raise ValidationError("event_date is required", field="event_date")

        snapshot = ContractSnapshot(
            template_id=template_id or templates.select_template_id(shape.event_type),
            title=f"Speaker Engagement Agreement - {shape.event_title}",
            deal_id=shape.id,
            firm_offer_id=firm_offer.id if firm_offer is not None else None,
            client_name=shape.client_name or "",
            client_email=(shape.client_email or "").strip(),
            client_company=shape.company,
            client_signer_name=signer.name or shape.client_name or "",
            client_signer_email=(signer.email or shape.client_email or "").strip(),
            client_signer_title=signer.title,
            speaker_name=speaker.name
            or (firm_offer.speaker_name if firm_offer is not None else None)
            or shape.speaker_requested,
            speaker_email=speaker.email or (firm_offer.speaker_email if firm_offer is not None else None),
            speaker_fee=speaker_fee,
            event_title=shape.event_title or "",
            event_date=shape.event_date,
            event_location=shape.event_location,
            event_type=shape.event_type,
            attendee_count=shape.attendee_count,
            total_amount=total_amount,
            payment_terms=payment_terms or DEFAULT_PAYMENT_TERMS,
            additional_terms=additional_terms,
        )
        templates.get_template(snapshot.template_id)
        validate_email(snapshot.client_email, "client_email")
        validate_email(snapshot.client_signer_email, "client_signer_email")
        if snapshot.speaker_email:
            validate_email(snapshot.speaker_email, "speaker_email")
        return snapshot

    def _persist(
        self,
        session: Session,
        actor_user_id: str,
        snapshot: ContractSnapshot,
        send_for_signature: bool,
        now: datetime,
    ) -> ContractRead:
        contract_id = uuid.uuid4()
        client_token = token_service.issue("contract_signing", str(contract_id), now=now)
        speaker_token = token_service.issue("contract_signing", str(contract_id), now=now)
        contract = self._insert_contract(session, contract_id, actor_user_id, snapshot, client_token, speaker_token, now)
        session.refresh(contract)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="contract",
            entity_id=str(contract.id),
            action="create",
            before=None,
            after={
                "contract_number": contract.contract_number,
                "deal_id": str(contract.deal_id) if contract.deal_id else None,
                "total_amount": str(contract.total_amount),
                "template_id": contract.template_id,
            },
        )
        events.publish(
            events.build_envelope(
                "booking.contract.created",
                actor_user_id,
                {
                    "contract_id": str(contract.id),
                    "contract_number": contract.contract_number,
                    "deal_id": str(contract.deal_id) if contract.deal_id else None,
                },
            )
        )
        logger.info("contract_created", extra={"contract_id": str(contract.id), "deal_id": str(contract.deal_id)})
        if send_for_signature:
            self._dispatch_signing_requests(session, actor_user_id, contract, now)
        return self._to_read(contract)

    def _insert_contract(
        self,
        session: Session,
        contract_id: uuid.UUID,
        actor_user_id: str,
        snapshot: ContractSnapshot,
        client_token: IssuedToken,
        speaker_token: IssuedToken,
        now: datetime,
    ) -> Contract:
        attempts_left = CONTRACT_NUMBER_ATTEMPTS
        while True:
            attempts_left -= 1
            contract_number = generate_contract_number(now)
            content = snapshot.render(contract_number, now.date())
            contract = Contract(
                id=contract_id,
                contract_number=contract_number,
                title=snapshot.title,
                template_id=snapshot.template_id,
                deal_id=snapshot.deal_id,
                firm_offer_id=snapshot.firm_offer_id,
                client_name=snapshot.client_name,
                client_email=snapshot.client_email,
                client_company=snapshot.client_company,
                client_signer_name=snapshot.client_signer_name,
                client_signer_email=snapshot.client_signer_email,
                client_signer_title=snapshot.client_signer_title,
                speaker_name=snapshot.speaker_name,
                speaker_email=snapshot.speaker_email,
                speaker_fee=snapshot.speaker_fee,
                event_title=snapshot.event_title,
                event_date=snapshot.event_date,
                event_location=snapshot.event_location,
                event_type=snapshot.event_type,
                attendee_count=snapshot.attendee_count,
                total_amount=snapshot.total_amount,
                payment_terms=snapshot.payment_terms,
                additional_terms=snapshot.additional_terms,
                content=content,
                status="draft",
                client_signing_token=client_token.value,
                speaker_signing_token=speaker_token.value,
                tokens_expire_at=client_token.expires_at or now,
                created_by=actor_user_id,
                created_at=now,
                updated_at=now,
            )
            session.add(contract)
            session.add(
                ContractVersion(
                    contract_id=contract_id,
                    version=1,
                    content=content,
                    change_summary="initial version",
                    created_by=actor_user_id,
                    created_at=now,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if attempts_left == 0:
                    raise
                logger.warning("contract_number_collision", extra={"contract_id": str(contract_id)})
                continue
            return contract

    def _dispatch_signing_requests(
        self,
        session: Session,
        actor_user_id: str,
        contract: Contract,
        now: datetime,
    ) -> tuple[bool, bool]:
        if contract.status == "draft":
            contract.sent_at = now
            contract.status = derive_status(contract.client_signed_at, contract.speaker_signed_at, contract.sent_at)
            contract.updated_at = now
            session.add(contract)
            session.commit()
            session.refresh(contract)
            events.publish(
                events.build_envelope(
                    "booking.contract.sent",
                    actor_user_id,
                    {"contract_id": str(contract.id), "contract_number": contract.contract_number},
                )
            )

        payload = {
            "contract_number": contract.contract_number,
            "event_title": contract.event_title,
            "event_date": contract.event_date.isoformat() if contract.event_date else None,
            "total_amount": str(contract.total_amount),
        }
        # each party is notified independently; one failing never blocks the other
        speaker_notified = False
        if contract.speaker_signing_token and contract.speaker_email and contract.speaker_signed_at is None:
            speaker_notified = self.notifications.notify(
                session,
                "contract_signing_request",
                {
                    **payload,
                    "party": "speaker",
                    "recipient_name": contract.speaker_name,
                    "signing_url": signing_url(contract.speaker_signing_token),
                },
                contract.speaker_email,
                entity_type="contract",
                entity_id=str(contract.id),
            )
        client_notified = False
        if contract.client_signing_token and contract.client_signed_at is None:
            cc = [contract.client_email] if contract.client_email.lower() != contract.client_signer_email.lower() else []
            client_notified = self.notifications.notify(
                session,
                "contract_signing_request",
                {
                    **payload,
                    "party": "client",
                    "recipient_name": contract.client_signer_name,
                    "signing_url": signing_url(contract.client_signing_token),
                },
                contract.client_signer_email,
                cc=cc,
                entity_type="contract",
                entity_id=str(contract.id),
            )
        return client_notified, speaker_notified

    def _claim_signature(
        self,
        session: Session,
        contract_id: uuid.UUID,
        party: str,
        token: str,
        dto: SignContractRequest,
        *,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> bool:
        """Atomically fills one signature slot; False when the slot was already taken."""

        token_column = Contract.client_signing_token if party == "client" else Contract.speaker_signing_token
        signed_column = Contract.client_signed_at if party == "client" else Contract.speaker_signed_at
        signature = dto.signature_data or dto.signer_name or ""
        values: dict[str, Any] = {f"{party}_signed_at": now, f"{party}_signature": signature, "updated_at": now}

        result = session.execute(
            update(Contract)
            .where(
                Contract.id == contract_id,
                token_column == token,
                signed_column.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            logger.warning("contract_signature_rejected", extra={"contract_id": str(contract_id), "party": party})
            return False

        session.add(
            ContractSignature(
                contract_id=contract_id,
                party=party,
                signer_name=(dto.signer_name or "").strip(),
                signer_email=dto.signer_email,
                signer_title=dto.signer_title,
                signature_data=signature,
                signature_method=dto.signature_method,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:512] or None,
                signed_at=now,
            )
        )
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return False
        return True

    def _settle_status(self, session: Session, contract_id: uuid.UUID, now: datetime) -> bool:
        """Re-derives status from committed signatures; True only for the call that completes the contract."""

        contract = session.scalar(
            select(Contract).where(Contract.id == contract_id).execution_options(populate_existing=True)
        )
        if contract is None:
            raise NotFoundError("contract not found")
        status_value = derive_status(contract.client_signed_at, contract.speaker_signed_at, contract.sent_at or now)
        if status_value == "fully_executed":
            result = session.execute(
                update(Contract)
                .where(Contract.id == contract_id, Contract.completed_at.is_(None))
                .values(status="fully_executed", completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount == 1

        session.execute(
            update(Contract)
            .where(Contract.id == contract_id, Contract.status != "fully_executed")
            .values(status=status_value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return False

    def _on_completed(self, session: Session, contract: Contract) -> None:
        events.publish(
            events.build_envelope(
                "booking.contract.completed",
                "system",
                {"contract_id": str(contract.id), "contract_number": contract.contract_number},
            )
        )
        logger.info("contract_completed", extra={"contract_id": str(contract.id), "status": contract.status})

        recipients: list[tuple[str, str | None]] = [(contract.client_email, contract.client_name)]
        if contract.client_signer_email.lower() != contract.client_email.lower():
            recipients.append((contract.client_signer_email, contract.client_signer_name))
        if contract.speaker_email:
            recipients.append((contract.speaker_email, contract.speaker_name))

        payload = {
            "contract_number": contract.contract_number,
            "event_title": contract.event_title,
            "event_date": contract.event_date.isoformat() if contract.event_date else None,
            "total_amount": str(contract.total_amount),
        }
        for recipient, name in recipients:
            self.notifications.notify(
                session,
                "contract_completed",
                {**payload, "recipient_name": name},
                recipient,
                entity_type="contract",
                entity_id=str(contract.id),
            )

    def _firm_offer(self, session: Session, firm_offer_id: uuid.UUID | None) -> FirmOffer | None:
        if firm_offer_id is None:
            return None
        offer = session.get(FirmOffer, firm_offer_id)
        if offer is None:
            raise NotFoundError("firm offer not found")
        return offer

    def _find_by_token(self, session: Session, token: str) -> Contract | None:
        if not token:
            return None
        return session.scalar(
            select(Contract)
            .where(or_(Contract.client_signing_token == token, Contract.speaker_signing_token == token))
            .execution_options(populate_existing=True)
        )

    def _get(self, session: Session, contract_id: uuid.UUID) -> Contract:
        contract = session.scalar(
            select(Contract)
            .where(Contract.id == contract_id)
            .options(selectinload(Contract.signatures))
            .execution_options(populate_existing=True)
        )
        if contract is None:
            raise NotFoundError("contract not found")
        return contract

    def _to_read(self, contract: Contract) -> ContractRead:
        return ContractRead(
            id=contract.id,
            contract_number=contract.contract_number,
            title=contract.title,
            template_id=contract.template_id,
            deal_id=contract.deal_id,
            firm_offer_id=contract.firm_offer_id,
            client_name=contract.client_name,
            client_email=contract.client_email,
            client_company=contract.client_company,
            client_signer_name=contract.client_signer_name,
            client_signer_email=contract.client_signer_email,
            client_signer_title=contract.client_signer_title,
            speaker_name=contract.speaker_name,
            speaker_email=contract.speaker_email,
            speaker_fee=contract.speaker_fee,
            event_title=contract.event_title,
            event_date=contract.event_date,
            event_location=contract.event_location,
            event_type=contract.event_type,
            attendee_count=contract.attendee_count,
            total_amount=contract.total_amount,
            payment_terms=contract.payment_terms,
            additional_terms=contract.additional_terms,
            status=contract.status,
            tokens_expire_at=contract.tokens_expire_at,
            client_signing_url=signing_url(contract.client_signing_token),
            speaker_signing_url=signing_url(contract.speaker_signing_token),
            sent_at=contract.sent_at,
            client_signed_at=contract.client_signed_at,
            speaker_signed_at=contract.speaker_signed_at,
            completed_at=contract.completed_at,
            created_by=contract.created_by,
            created_at=contract.created_at,
            updated_at=contract.updated_at,
            signatures=[ContractSignatureRead.model_validate(item) for item in contract.signatures],
        )


contract_service = ContractService()
