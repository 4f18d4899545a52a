from celery import Celery

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery("booking_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.imports = ("app.business.firm_offers.tasks",)
celery_app.conf.beat_schedule = {
    "sweep-expired-firm-offer-holds": {
        "task": "app.tasks.sweep_expired_holds",
        "schedule": settings.hold_sweep_interval_minutes * 60.0,
    },
}
