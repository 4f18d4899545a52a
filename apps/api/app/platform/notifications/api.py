from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import NOTIFICATIONS_READ, ensure_permission
from app.platform.notifications.schemas import NotificationDeliveryRead, NotificationSummary
from app.platform.notifications.service import notification_service


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/deliveries", response_model=list[NotificationDeliveryRead])
def list_deliveries(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    kind: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[NotificationDeliveryRead] | JSONResponse:
    try:
        ensure_permission(user, NOTIFICATIONS_READ)
        return notification_service.list_deliveries(
            db, status_filter=status_filter, kind=kind, entity_id=entity_id, limit=limit
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "notification_list_failed")


@router.get("/summary", response_model=NotificationSummary)
def delivery_summary(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> NotificationSummary | JSONResponse:
    try:
        ensure_permission(user, NOTIFICATIONS_READ)
        return notification_service.summary(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "notification_summary_failed")
