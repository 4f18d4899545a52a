from __future__ import annotations

import math
from datetime import datetime, timedelta

from app.core.config import get_settings
from app.core.database import as_utc
from app.business.firm_offers.schemas import HoldStatus

SECONDS_PER_DAY = 86400
CONFIRMED_STATUS = "speaker_confirmed"


def default_hold_expiry(created_at: datetime) -> datetime:
    return created_at + timedelta(days=get_settings().firm_offer_hold_days)


def days_remaining(hold_expires_at: datetime, now: datetime) -> int:
    """Whole days left on the hold, rounded up; negative once a full day has lapsed."""

    remaining = (as_utc(hold_expires_at) - as_utc(now)).total_seconds()
    return math.ceil(remaining / SECONDS_PER_DAY)


def is_hold_expired(hold_expires_at: datetime, status: str, now: datetime) -> bool:
    if status == CONFIRMED_STATUS:
        return False
    return days_remaining(hold_expires_at, now) < 0


def hold_status(hold_expires_at: datetime, status: str, now: datetime) -> HoldStatus:
    return HoldStatus(
        hold_expires_at=as_utc(hold_expires_at),
        days_remaining=max(0, days_remaining(hold_expires_at, now)),
        expired=is_hold_expired(hold_expires_at, status, now),
    )
