from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.deals.schemas import (
    DealCreate,
    DealInquiryCreate,
    DealRead,
    DealStatusChange,
    DealUpdate,
    DealWriteResponse,
)
from app.business.deals.service import deal_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import DEALS_READ, DEALS_WRITE, ensure_permission


router = APIRouter(prefix="/api/deals", tags=["deals"])


@router.get("", response_model=list[DealRead])
def list_deals(
    request: Request,
    search: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        ensure_permission(user, DEALS_READ)
        return deal_service.list_deals(db, search=search, status_filter=status_filter)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_list_failed")


@router.post("", response_model=DealWriteResponse, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealWriteResponse | JSONResponse:
    try:
        ensure_permission(user, DEALS_WRITE)
        return deal_service.create_deal(db, user.sub, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_create_failed")


@router.post("/inquiry", response_model=DealWriteResponse, status_code=status.HTTP_201_CREATED)
def submit_inquiry(
    request: Request,
    dto: DealInquiryCreate,
    db: Session = Depends(get_db),
) -> DealWriteResponse | JSONResponse:
    try:
        return deal_service.create_inquiry(db, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_inquiry_failed")


@router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        ensure_permission(user, DEALS_READ)
        return deal_service.get_deal(db, deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_get_failed")


@router.patch("/{deal_id}", response_model=DealWriteResponse)
def update_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealWriteResponse | JSONResponse:
    try:
        ensure_permission(user, DEALS_WRITE)
        return deal_service.update_deal(db, user.sub, deal_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_update_failed")


@router.post("/{deal_id}/status", response_model=DealWriteResponse)
def change_deal_status(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealStatusChange,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealWriteResponse | JSONResponse:
    try:
        ensure_permission(user, DEALS_WRITE)
        return deal_service.set_status(db, user.sub, deal_id, dto.status)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_status_failed")
