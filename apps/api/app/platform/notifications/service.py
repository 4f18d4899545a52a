from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.metrics import observe_notification
from app.platform.notifications import messages
from app.platform.notifications.gateway import NotificationMessage, get_notification_gateway
from app.platform.notifications.models import NotificationDelivery
from app.platform.notifications.schemas import (
    NotificationDeliveryRead,
    NotificationSummary,
    NotificationSummaryRow,
)


logger = logging.getLogger("app.notifications")
tracer = trace.get_tracer("app.notifications")


@dataclass(slots=True)
class NotificationService:
    def notify(
        self,
        session: Session,
        kind: str,
        payload: dict[str, Any],
        recipient: str | None,
        *,
        cc: list[str] | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> bool:
        """Attempt one delivery. Never raises; the outcome is logged, counted and recorded."""

        gateway = get_notification_gateway()
        with tracer.start_as_current_span("notifications.notify") as span:
            span.set_attribute("notification.kind", kind)
            span.set_attribute("notification.backend", gateway.name)
            subject = kind
            error: str | None = None
            try:
                if not recipient:
                    raise ValueError("missing recipient")
                subject, body = messages.render(kind, payload)
                gateway.send(
                    NotificationMessage(
                        kind=kind,
                        recipient=recipient,
                        subject=subject,
                        body=body,
                        cc=tuple(address for address in (cc or []) if address and address != recipient),
                        payload=payload,
                    )
                )
            except Exception as exc:
                error = str(exc)[:500]
                logger.exception(
                    "notification_failed",
                    extra={"notification_kind": kind, "recipient": recipient, "outcome": "failed", "error": error},
                )

            delivered = error is None
            outcome = "delivered" if delivered else "failed"
            span.set_attribute("notification.outcome", outcome)
            observe_notification(kind, outcome)
            self._record(
                session,
                NotificationDelivery(
                    kind=kind,
                    recipient=recipient or "",
                    cc=list(cc or []),
                    subject=subject[:500],
                    status=outcome,
                    error=error,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    backend=gateway.name,
                    correlation_id=get_correlation_id(),
                ),
            )
            if delivered:
                logger.info(
                    "notification_sent",
                    extra={"notification_kind": kind, "recipient": recipient, "outcome": outcome},
                )
            return delivered

    def _record(self, session: Session, delivery: NotificationDelivery) -> None:
        try:
            session.add(delivery)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception(
                "notification_record_failed",
                extra={"notification_kind": delivery.kind, "error": str(exc)[:500]},
            )

    def list_deliveries(
        self,
        session: Session,
        *,
        status_filter: str | None = None,
        kind: str | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[NotificationDeliveryRead]:
        stmt = select(NotificationDelivery)
        if status_filter:
            stmt = stmt.where(NotificationDelivery.status == status_filter)
        if kind:
            stmt = stmt.where(NotificationDelivery.kind == kind)
        if entity_id:
            stmt = stmt.where(NotificationDelivery.entity_id == entity_id)
        rows = session.scalars(stmt.order_by(NotificationDelivery.created_at.desc()).limit(limit)).all()
        return [NotificationDeliveryRead.model_validate(row) for row in rows]

    def summary(self, session: Session) -> NotificationSummary:
        rows = session.execute(
            select(NotificationDelivery.kind, NotificationDelivery.status, func.count())
            .group_by(NotificationDelivery.kind, NotificationDelivery.status)
            .order_by(NotificationDelivery.kind)
        ).all()
        by_kind: dict[str, NotificationSummaryRow] = {}
        for kind, status_value, count in rows:
            row = by_kind.setdefault(kind, NotificationSummaryRow(kind=kind))
            if status_value == "delivered":
                row.delivered += int(count)
            else:
                row.failed += int(count)
        delivered = sum(row.delivered for row in by_kind.values())
        failed = sum(row.failed for row in by_kind.values())
        return NotificationSummary(
            total=delivered + failed,
            delivered=delivered,
            failed=failed,
            by_kind=list(by_kind.values()),
        )


notification_service = NotificationService()
