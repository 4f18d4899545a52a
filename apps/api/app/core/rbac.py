from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from fastapi import HTTPException, status

if TYPE_CHECKING:
    from app.core.auth import AuthUser


ADMIN_ROLE = "admin"
# principals from unsigned legacy tokens; grants nothing on the staff API
SPEAKER_ROLE = "speaker"

DEALS_READ = "booking.deals.read"
DEALS_WRITE = "booking.deals.write"
PROJECTS_READ = "booking.projects.read"
FIRM_OFFERS_READ = "booking.firm_offers.read"
FIRM_OFFERS_WRITE = "booking.firm_offers.write"
CONTRACTS_READ = "booking.contracts.read"
CONTRACTS_WRITE = "booking.contracts.write"
NOTIFICATIONS_READ = "booking.notifications.read"
METRICS_READ = "system.metrics.read"

# staff roles expand to permission sets; any other role string is a single permission grant
ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "agent": frozenset(
        {
            DEALS_READ,
            DEALS_WRITE,
            PROJECTS_READ,
            FIRM_OFFERS_READ,
            FIRM_OFFERS_WRITE,
            CONTRACTS_READ,
            CONTRACTS_WRITE,
        }
    ),
    "finance": frozenset({DEALS_READ, PROJECTS_READ, CONTRACTS_READ, NOTIFICATIONS_READ}),
    "viewer": frozenset({DEALS_READ, PROJECTS_READ, FIRM_OFFERS_READ, CONTRACTS_READ}),
}


def roles_grant(roles: Iterable[str], permission: str) -> bool:
    for role in roles:
        if role == ADMIN_ROLE or role == permission:
            return True
        if permission in ROLE_PERMISSIONS.get(role, frozenset()):
            return True
    return False


def ensure_permission(user: AuthUser, permission: str) -> None:
    if not user.has_permission(permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
