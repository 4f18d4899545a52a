from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app import audit, events
from app.business.deals.models import Deal
from app.business.deals.schemas import (
    DEAL_PRIORITIES,
    DEAL_STATUSES,
    DealCreate,
    DealInquiryCreate,
    DealRead,
    DealUpdate,
    DealWriteResponse,
)
from app.business.projects.schemas import ProjectRead
from app.business.projects.service import ProjectProvisioningService, project_provisioning_service
from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.metrics import observe_project_provisioning
from app.platform.notifications import NotificationService, notification_service


logger = logging.getLogger("app.deals")
tracer = trace.get_tracer("app.deals")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_DEAL_FIELDS = (
    "client_name",
    "client_email",
    "company",
    "event_title",
    "event_date",
    "event_location",
    "event_type",
    "attendee_count",
    "budget_range",
    "deal_value",
    "status",
    "priority",
    "source",
    "notes",
    "last_contact",
)
# free text that may legitimately be blank
BLANK_ALLOWED_FIELDS = {"notes"}

OPEN_STATUSES = {"lead", "qualified", "proposal", "negotiation"}
SPEAKER_DECISION_STATUS = {"confirm": "negotiation", "decline": "lost"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_email(value: str | None, field: str) -> None:
    if value is None or not EMAIL_RE.match(value.strip()):
        raise ValidationError(f"{field} must be a valid email address", field=field)


def _require_fields(values: dict[str, Any], fields: tuple[str, ...]) -> None:
    for name in fields:
        value = values.get(name)
        if value is None:
            raise ValidationError(f"{name} is required", field=name)
        if isinstance(value, str) and not value.strip() and name not in BLANK_ALLOWED_FIELDS:
            raise ValidationError(f"{name} is required", field=name)


def _validate_values(values: dict[str, Any]) -> None:
    if "client_email" in values and values["client_email"] is not None:
        validate_email(values["client_email"], "client_email")
    deal_value = values.get("deal_value")
    if deal_value is not None and Decimal(deal_value) <= 0:
        raise ValidationError("deal_value must be greater than zero", field="deal_value")
    attendee_count = values.get("attendee_count")
    if attendee_count is not None and attendee_count < 0:
        raise ValidationError("attendee_count must not be negative", field="attendee_count")
    status_value = values.get("status")
    if status_value is not None and status_value not in DEAL_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(DEAL_STATUSES)}", field="status")
    priority = values.get("priority")
    if priority is not None and priority not in DEAL_PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(DEAL_PRIORITIES)}", field="priority")


@dataclass(slots=True)
class DealService:
    provisioning: ProjectProvisioningService = field(default_factory=lambda: project_provisioning_service)
    notifications: NotificationService = field(default_factory=lambda: notification_service)

    def create_deal(self, session: Session, actor_user_id: str, dto: DealCreate) -> DealWriteResponse:
        values = dto.model_dump()
        _require_fields(values, REQUIRED_DEAL_FIELDS)
        _validate_values(values)
        return self._insert(session, actor_user_id, values)

    def create_inquiry(self, session: Session, dto: DealInquiryCreate) -> DealWriteResponse:
        values = dto.model_dump(exclude={"message"})
        _require_fields(values, ("client_name", "client_email", "event_title"))
        validate_email(values["client_email"], "client_email")
        values.update(
            status="lead",
            priority="medium",
            source="website_inquiry",
            deal_value=Decimal("0"),
            notes=dto.message,
        )
        return self._insert(session, "public_inquiry", values)

    def get_deal(self, session: Session, deal_id: uuid.UUID) -> DealRead:
        return self._to_read(self._get(session, deal_id))

    def search(self, session: Session, term: str) -> list[DealRead]:
        return self.list_deals(session, search=term)

    def list_by_status(self, session: Session, status_value: str) -> list[DealRead]:
        return self.list_deals(session, status_filter=status_value)

    def list_deals(
        self,
        session: Session,
        *,
        search: str | None = None,
        status_filter: str | None = None,
        limit: int = 200,
    ) -> list[DealRead]:
        stmt = select(Deal)
        if status_filter:
            if status_filter not in DEAL_STATUSES:
                raise ValidationError(f"status must be one of {', '.join(DEAL_STATUSES)}", field="status")
            stmt = stmt.where(Deal.status == status_filter)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Deal.client_name).like(pattern),
                    func.lower(Deal.client_email).like(pattern),
                    func.lower(func.coalesce(Deal.company, "")).like(pattern),
                    func.lower(Deal.event_title).like(pattern),
                    func.lower(func.coalesce(Deal.notes, "")).like(pattern),
                )
            )
        rows = session.scalars(stmt.order_by(Deal.created_at.desc()).limit(limit)).all()
        return [self._to_read(row) for row in rows]

    def update_deal(self, session: Session, actor_user_id: str, deal_id: uuid.UUID, dto: DealUpdate) -> DealWriteResponse:
        values = dto.model_dump(exclude_unset=True)
        for name in ("client_name", "client_email", "event_title"):
            if name in values:
                _require_fields(values, (name,))
        _validate_values(values)
        deal = self._get(session, deal_id)
        new_status = values.pop("status", None)

        with tracer.start_as_current_span("deals.update") as span:
            span.set_attribute("deal_id", str(deal.id))
            before = self._to_read(deal).model_dump(mode="json")
            for name, value in values.items():
                setattr(deal, name, value)
            previous_status = self._apply_status(deal, new_status) if new_status else deal.status
            session.add(deal)
            session.commit()
            session.refresh(deal)

            after = self._to_read(deal)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="deal",
                entity_id=str(deal.id),
                action="update",
                before=before,
                after=after.model_dump(mode="json"),
            )
            return self._after_status_change(session, actor_user_id, deal, previous_status)

    def set_status(self, session: Session, actor_user_id: str, deal_id: uuid.UUID, new_status: str) -> DealWriteResponse:
        _validate_values({"status": new_status})
        deal = self._get(session, deal_id)
        with tracer.start_as_current_span("deals.set_status") as span:
            span.set_attribute("deal_id", str(deal.id))
            span.set_attribute("deal.status", new_status)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            if deal.status == new_status:
                return DealWriteResponse(**self._to_read(deal).model_dump(), message="status unchanged")

            before = self._to_read(deal).model_dump(mode="json")
            previous_status = self._apply_status(deal, new_status)
            session.add(deal)
            session.commit()
            session.refresh(deal)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="deal",
                entity_id=str(deal.id),
                action="set_status",
                before=before,
                after=self._to_read(deal).model_dump(mode="json"),
            )
            return self._after_status_change(session, actor_user_id, deal, previous_status)

    def apply_speaker_decision(self, session: Session, actor_user_id: str, deal_id: uuid.UUID, decision: str) -> DealRead | None:
        """Moves an open deal to negotiation (confirm) or lost (decline).

        Deals that already left the open pipeline are left untouched.
        """

        target = SPEAKER_DECISION_STATUS.get(decision)
        if target is None:
            raise ValidationError("decision must be confirm or decline", field="decision")
        deal = session.get(Deal, deal_id)
        if deal is None:
            logger.warning("speaker_decision_deal_missing", extra={"deal_id": str(deal_id)})
            return None
        if deal.status not in OPEN_STATUSES or deal.status == target:
            return self._to_read(deal)
        return self.set_status(session, actor_user_id, deal.id, target)

    def require_won(self, session: Session, deal_id: uuid.UUID) -> Deal:
        deal = self._get(session, deal_id)
        if deal.status != "won":
            raise InvalidStateError("deal must be won before a contract can be created", details={"status": deal.status})
        return deal

    def _insert(self, session: Session, actor_user_id: str, values: dict[str, Any]) -> DealWriteResponse:
        with tracer.start_as_current_span("deals.create") as span:
            deal = Deal(**values)
            if deal.status == "won":
                deal.won_at = utcnow()
            elif deal.status == "lost":
                deal.lost_at = utcnow()
            session.add(deal)
            session.commit()
            session.refresh(deal)
            span.set_attribute("deal_id", str(deal.id))

            created = self._to_read(deal)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="deal",
                entity_id=str(deal.id),
                action="create",
                before=None,
                after=created.model_dump(mode="json"),
            )
            events.publish(
                events.build_envelope(
                    "booking.deal.created",
                    actor_user_id,
                    {"deal_id": str(deal.id), "status": deal.status, "source": deal.source},
                )
            )
            logger.info("deal_created", extra={"deal_id": str(deal.id), "status": deal.status})
            self.notifications.notify(
                session,
                "new_deal",
                self._notification_payload(deal),
                get_settings().admin_notification_email,
                entity_type="deal",
                entity_id=str(deal.id),
            )
            # a deal created directly as won provisions like a transition into won
            return self._after_status_change(session, actor_user_id, deal, None)

    def _apply_status(self, deal: Deal, new_status: str) -> str:
        previous_status = deal.status
        deal.status = new_status
        if new_status == "won" and previous_status != "won":
            deal.won_at = utcnow()
        if new_status == "lost" and previous_status != "lost":
            deal.lost_at = utcnow()
        return previous_status

    def _after_status_change(
        self,
        session: Session,
        actor_user_id: str,
        deal: Deal,
        previous_status: str | None,
    ) -> DealWriteResponse:
        response = DealWriteResponse(**self._to_read(deal).model_dump())
        if previous_status is not None and previous_status != deal.status:
            events.publish(
                events.build_envelope(
                    "booking.deal.status_changed",
                    actor_user_id,
                    {"deal_id": str(deal.id), "from": previous_status, "to": deal.status},
                )
            )
        if deal.status != "won" or previous_status == "won":
            return response

        project, created = self._provision(session, actor_user_id, deal)
        events.publish(
            events.build_envelope(
                "booking.deal.won",
                actor_user_id,
                {
                    "deal_id": str(deal.id),
                    "project_id": str(project.id) if project else None,
                    "project_created": created,
                },
            )
        )
        payload = self._notification_payload(deal)
        payload["project_id"] = str(project.id) if project else None
        self.notifications.notify(
            session,
            "deal_won",
            payload,
            get_settings().admin_notification_email,
            entity_type="deal",
            entity_id=str(deal.id),
        )
        response.project_created = created
        response.project_id = project.id if project else None
        if project is None:
            response.message = "Deal marked won; project provisioning failed"
        elif created:
            response.message = "Deal marked won and project created"
        else:
            response.message = "Deal marked won; existing project kept"
        return response

    def _provision(self, session: Session, actor_user_id: str, deal: Deal) -> tuple[ProjectRead | None, bool]:
        try:
            return self.provisioning.on_deal_won(session, deal, actor_user_id)
        except Exception as exc:
            session.rollback()
            observe_project_provisioning("failed")
            logger.exception(
                "project_provisioning_failed",
                extra={"deal_id": str(deal.id), "error": str(exc)[:500]},
            )
            return None, False

    def _notification_payload(self, deal: Deal) -> dict[str, Any]:
        return {
            "deal_id": str(deal.id),
            "client_name": deal.client_name,
            "company": deal.company,
            "event_title": deal.event_title,
            "event_date": deal.event_date.isoformat() if deal.event_date else None,
            "deal_value": str(deal.deal_value),
            "source": deal.source,
        }

    def _get(self, session: Session, deal_id: uuid.UUID) -> Deal:
        deal = session.get(Deal, deal_id)
        if deal is None:
            raise NotFoundError("deal not found")
        return deal

    def _to_read(self, deal: Deal) -> DealRead:
        return DealRead.model_validate(deal)


deal_service = DealService()
