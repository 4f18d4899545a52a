from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.firm_offers.schemas import (
    FirmOfferCreate,
    FirmOfferPublicRead,
    FirmOfferRead,
    FirmOfferSubmit,
    SendToSpeakerRequest,
    SendToSpeakerResponse,
    SpeakerDecisionRequest,
)
from app.business.firm_offers.service import firm_offer_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import FIRM_OFFERS_READ, FIRM_OFFERS_WRITE, ensure_permission


router = APIRouter(prefix="/api/firm-offers", tags=["firm_offers"])
public_router = APIRouter(prefix="/api/firm-offers/public", tags=["firm_offers.public"])


@router.get("", response_model=list[FirmOfferRead])
def list_firm_offers(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    deal_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[FirmOfferRead] | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_READ)
        return firm_offer_service.list_offers(db, status_filter=status_filter, deal_id=deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_list_failed")


@router.post("", response_model=FirmOfferRead, status_code=status.HTTP_201_CREATED)
def create_firm_offer(
    request: Request,
    response: Response,
    dto: FirmOfferCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> FirmOfferRead | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_WRITE)
        offer, created = firm_offer_service.create_offer(db, user.sub, dto)
        if not created:
            response.status_code = status.HTTP_200_OK
        return offer
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_create_failed")


@router.get("/{offer_id}", response_model=FirmOfferRead)
def get_firm_offer(
    request: Request,
    offer_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> FirmOfferRead | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_READ)
        return firm_offer_service.get_offer(db, offer_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_get_failed")


@router.post("/{offer_id}/submit", response_model=FirmOfferRead)
def submit_firm_offer(
    request: Request,
    offer_id: uuid.UUID,
    dto: FirmOfferSubmit,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> FirmOfferRead | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_WRITE)
        return firm_offer_service.submit_essential_info(db, user.sub, offer_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_submit_failed")


@router.post("/{offer_id}/send-to-speaker", response_model=SendToSpeakerResponse)
def send_firm_offer_to_speaker(
    request: Request,
    offer_id: uuid.UUID,
    dto: SendToSpeakerRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SendToSpeakerResponse | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_WRITE)
        return firm_offer_service.send_to_speaker(db, user.sub, offer_id, dto.speaker_email, dto.speaker_name)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_send_failed")


@router.post("/{offer_id}/decision", response_model=FirmOfferRead)
def record_firm_offer_decision(
    request: Request,
    offer_id: uuid.UUID,
    dto: SpeakerDecisionRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> FirmOfferRead | JSONResponse:
    try:
        ensure_permission(user, FIRM_OFFERS_WRITE)
        return firm_offer_service.record_speaker_decision(db, user.sub, offer_id, dto.decision, dto.notes)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_decision_failed")


@public_router.get("/{token}", response_model=FirmOfferPublicRead)
def view_firm_offer(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
) -> FirmOfferPublicRead | JSONResponse:
    try:
        return firm_offer_service.resolve_by_speaker_token(db, token)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_view_failed")


@public_router.put("/{token}", response_model=FirmOfferPublicRead)
def submit_firm_offer_by_token(
    request: Request,
    token: str,
    dto: FirmOfferSubmit,
    db: Session = Depends(get_db),
) -> FirmOfferPublicRead | JSONResponse:
    try:
        return firm_offer_service.submit_by_token(db, token, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_submit_failed")


@public_router.post("/{token}/decision", response_model=FirmOfferPublicRead)
def record_decision_by_token(
    request: Request,
    token: str,
    dto: SpeakerDecisionRequest,
    db: Session = Depends(get_db),
) -> FirmOfferPublicRead | JSONResponse:
    try:
        return firm_offer_service.decision_by_token(db, token, dto.decision, dto.notes)
    except HTTPException as exc:
        return http_error_response(request, exc, "firm_offer_decision_failed")
