from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.deals.models import Deal
from app.business.projects.models import Project
from app.business.projects.schemas import ProjectRead
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.metrics import observe_project_provisioning


logger = logging.getLogger("app.projects")
tracer = trace.get_tracer("app.projects")

PROJECT_TYPE_BY_EVENT_TYPE = {
    "workshop": "Workshop",
    "keynote": "Speaking",
    "consulting": "Consulting",
}
INVOICING_CHECKLIST = ("contract_signed", "invoice_sent", "payment_received", "presentation_ready", "materials_sent")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def project_type_for(event_type: str | None) -> str:
    return PROJECT_TYPE_BY_EVENT_TYPE.get((event_type or "").strip().lower(), "Other")


def classify_event(event_type: str | None, event_location: str | None) -> str:
    kind = (event_type or "").lower()
    location = (event_location or "").lower()
    if "virtual" in kind or "webinar" in kind or "remote" in location:
        return "virtual"
    return "local"


def _q(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class ProjectProvisioningService:
    def on_deal_won(self, session: Session, deal: Deal, actor_user_id: str, *, today: date | None = None) -> tuple[ProjectRead, bool]:
        """Create the downstream project for a won deal.

        Returns ``(project, created)``. A deal owns at most one project, so a
        deal that re-enters ``won`` gets its existing project back.
        """

        with tracer.start_as_current_span("projects.on_deal_won") as span:
            span.set_attribute("deal_id", str(deal.id))
            existing = self._find_by_deal(session, deal.id)
            if existing is not None:
                span.set_attribute("project.created", False)
                observe_project_provisioning("existing")
                return self._to_read(existing), False

            project = self._build_from_deal(deal, today or date.today())
            session.add(project)
            try:
                session.commit()
            except IntegrityError:
                # a concurrent won transition provisioned first
                session.rollback()
                existing = self._find_by_deal(session, deal.id)
                if existing is None:
                    raise
                observe_project_provisioning("existing")
                return self._to_read(existing), False
            session.refresh(project)

            created = self._to_read(project)
            span.set_attribute("project.created", True)
            span.set_attribute("project_id", str(project.id))
            observe_project_provisioning("created")
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="project",
                entity_id=str(project.id),
                action="provision",
                before=None,
                after=created.model_dump(mode="json"),
            )
            events.publish(
                events.build_envelope(
                    "booking.project.provisioned",
                    actor_user_id,
                    {"project_id": str(project.id), "deal_id": str(deal.id), "budget": str(project.budget)},
                )
            )
            logger.info("project_provisioned", extra={"deal_id": str(deal.id), "project_id": str(project.id)})
            return created, True

    def get_project(self, session: Session, project_id: uuid.UUID) -> ProjectRead:
        project = session.get(Project, project_id)
        if project is None:
            raise NotFoundError("project not found")
        return self._to_read(project)

    def list_projects(self, session: Session, *, deal_id: uuid.UUID | None = None, status_filter: str | None = None) -> list[ProjectRead]:
        stmt = select(Project)
        if deal_id is not None:
            stmt = stmt.where(Project.deal_id == deal_id)
        if status_filter:
            stmt = stmt.where(Project.status == status_filter)
        rows = session.scalars(stmt.order_by(Project.created_at.desc())).all()
        return [self._to_read(row) for row in rows]

    def _find_by_deal(self, session: Session, deal_id: uuid.UUID) -> Project | None:
        return session.scalar(select(Project).where(Project.deal_id == deal_id))

    def _build_from_deal(self, deal: Deal, today: date) -> Project:
        settings = get_settings()
        deal_value = Decimal(deal.deal_value or 0)
        commission = _q(deal_value * Decimal(str(settings.default_commission_rate)))
        contact = {
            "name": deal.client_name,
            "email": deal.client_email,
            "phone": deal.client_phone or "",
        }
        description_lines = [
            f"Event: {deal.event_title}",
            f"Location: {deal.event_location or 'TBD'}",
            f"Attendees: {deal.attendee_count if deal.attendee_count is not None else 'TBD'}",
        ]
        description = "\n".join(description_lines)
        if deal.notes:
            description = f"{description}\n\n{deal.notes}"
        notes = "\n".join(
            [
                f"Deal ID: {deal.id}",
                f"Source: {deal.source or 'unknown'}",
                f"Budget Range: {deal.budget_range or 'n/a'}",
                f"Original notes: {deal.notes or ''}",
            ]
        )

        return Project(
            deal_id=deal.id,
            project_name=deal.event_title,
            client_name=deal.client_name,
            client_email=deal.client_email,
            client_phone=deal.client_phone,
            company=deal.company,
            project_type=project_type_for(deal.event_type),
            description=description,
            status="invoicing",
            priority=deal.priority,
            start_date=today,
            deadline=deal.event_date,
            budget=deal_value,
            spent=Decimal("0"),
            completion_percentage=0,
            speaker_fee=_q(deal_value - commission),
            commission_amount=commission,
            billing_contact=dict(contact),
            logistics_contact=dict(contact),
            end_client_name=deal.company,
            event_name=deal.event_title,
            event_date=deal.event_date,
            event_location=deal.event_location,
            event_type=deal.event_type,
            event_classification=classify_event(deal.event_type, deal.event_location),
            requested_speaker_name=deal.speaker_requested,
            program_topic=f"{deal.event_title} - {deal.event_type or 'Event'}",
            audience_size=deal.attendee_count,
            tags=[tag for tag in (deal.event_type, deal.source) if tag],
            stage_completion={"invoicing": {item: False for item in INVOICING_CHECKLIST}},
            notes=notes,
        )

    def _to_read(self, project: Project) -> ProjectRead:
        return ProjectRead.model_validate(project)


project_provisioning_service = ProjectProvisioningService()
