from __future__ import annotations

import logging

from app.business.firm_offers.service import firm_offer_service
from app.context import correlation_scope
from app.core.celery_app import celery_app
from app.core.database import SessionLocal


logger = logging.getLogger("app.firm_offers")


@celery_app.task(name="app.tasks.sweep_expired_holds")
def sweep_expired_holds_task() -> int:
    with correlation_scope(prefix="hold-sweep"):
        session = SessionLocal()
        try:
            count = firm_offer_service.sweep_expired_holds(session)
        except Exception as exc:
            session.rollback()
            logger.exception("firm_offer_hold_sweep_failed", extra={"error": str(exc)[:500]})
            raise
        finally:
            session.close()
        logger.info("firm_offer_hold_sweep_finished", extra={"count": count})
        return count
