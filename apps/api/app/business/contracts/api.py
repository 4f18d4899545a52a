from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.contracts.schemas import (
    ContractContentRead,
    ContractCreateRequest,
    ContractPreviewResponse,
    ContractRead,
    ContractSendResponse,
    ContractSigningView,
    ContractStatusOverride,
    SignContractRequest,
)
from app.business.contracts.service import contract_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.errors import ValidationError
from app.core.rbac import CONTRACTS_READ, CONTRACTS_WRITE, ensure_permission


router = APIRouter(prefix="/api/contracts", tags=["contracts"])
signing_router = APIRouter(prefix="/api/contracts/sign", tags=["contracts.signing"])


def _client_details(request: Request) -> tuple[str | None, str | None]:
    context = getattr(request.state, "context", None)
    if context is not None:
        return context.client_ip, context.user_agent
    return (request.client.host if request.client else None), request.headers.get("user-agent")


@router.get("", response_model=list[ContractRead])
def list_contracts(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    deal_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ContractRead] | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_READ)
        return contract_service.list_contracts(db, status_filter=status_filter, deal_id=deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_list_failed")


@router.post("", response_model=None, status_code=status.HTTP_201_CREATED)
def create_contract(
    request: Request,
    dto: ContractCreateRequest,
    preview: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | ContractPreviewResponse | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_WRITE)
        if preview:
            if dto.deal_id is None:
                raise ValidationError("deal_id is required for a preview", field="deal_id")
            result = contract_service.preview_content(
                db,
                dto.deal_id,
                speaker_info=dto.speaker_info,
                payment_terms=dto.payment_terms,
                additional_terms=dto.additional_terms,
                client_signer=dto.client_signer,
                template_id=dto.template_id,
                firm_offer_id=dto.firm_offer_id,
            )
            return JSONResponse(status_code=status.HTTP_200_OK, content=result.model_dump(mode="json"))
        if dto.deal_id is None:
            if not dto.template_id or dto.values is None:
                raise ValidationError("deal_id or template_id with values is required", field="deal_id")
            return contract_service.create_from_template(
                db,
                user.sub,
                dto.template_id,
                dto.values,
                send_for_signature=dto.send_for_signature,
            )
        return contract_service.create_from_deal(
            db,
            user.sub,
            dto.deal_id,
            speaker_info=dto.speaker_info,
            additional_terms=dto.additional_terms,
            client_signer=dto.client_signer,
            payment_terms=dto.payment_terms,
            template_id=dto.template_id,
            firm_offer_id=dto.firm_offer_id,
            send_for_signature=dto.send_for_signature,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_create_failed")


@router.get("/{contract_id}", response_model=ContractRead)
def get_contract(
    request: Request,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_READ)
        return contract_service.get_contract(db, contract_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_get_failed")


@router.get("/{contract_id}/content", response_model=ContractContentRead)
def get_contract_content(
    request: Request,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractContentRead | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_READ)
        return contract_service.get_content(db, contract_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_content_failed")


@router.post("/{contract_id}/send", response_model=ContractSendResponse)
def send_contract(
    request: Request,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractSendResponse | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_WRITE)
        return contract_service.send_for_signature(db, user.sub, contract_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_send_failed")


@router.patch("/{contract_id}/status", response_model=ContractRead)
def override_contract_status(
    request: Request,
    contract_id: uuid.UUID,
    dto: ContractStatusOverride,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        ensure_permission(user, CONTRACTS_WRITE)
        return contract_service.override_status(db, user.sub, contract_id, dto.status)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_status_failed")


@signing_router.get("/{token}", response_model=ContractSigningView)
def view_contract_for_signing(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
) -> ContractSigningView | JSONResponse:
    try:
        return contract_service.signing_view(db, token)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_signing_view_failed")


@signing_router.post("/{token}", response_model=ContractRead)
def sign_contract(
    request: Request,
    token: str,
    dto: SignContractRequest,
    db: Session = Depends(get_db),
) -> ContractRead | JSONResponse:
    ip_address, user_agent = _client_details(request)
    try:
        return contract_service.sign_by_token(db, token, dto, ip_address=ip_address, user_agent=user_agent)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_sign_failed")
