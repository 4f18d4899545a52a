from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from app.api.errors import http_error_response
from app.business.contracts.api import router as contracts_router
from app.business.contracts.api import signing_router as contract_signing_router
from app.business.deals.api import router as deals_router
from app.business.firm_offers.api import public_router as firm_offers_public_router
from app.business.firm_offers.api import router as firm_offers_router
from app.business.projects.api import router as projects_router
from app.core.auth import AuthUser, bearer_token, get_current_user
from app.core.config import get_settings
from app.core.rbac import METRICS_READ, ensure_permission
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.notifications.api import router as notifications_router
from app.platform.tokens import token_service

router = APIRouter()
# public token routes first so their prefixes win over /{id} patterns
router.include_router(firm_offers_public_router)
router.include_router(contract_signing_router)
router.include_router(deals_router)
router.include_router(projects_router)
router.include_router(firm_offers_router)
router.include_router(contracts_router)
router.include_router(notifications_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.post("/api/auth/refresh", tags=["auth"], response_model=None)
def refresh_session(request: Request) -> dict[str, str | None] | JSONResponse:
    try:
        issued = token_service.refresh(bearer_token(request))
    except HTTPException as exc:
        return http_error_response(request, exc, "token_refresh_failed")
    return {
        "access_token": issued.value,
        "token_type": "bearer",
        "expires_at": issued.expires_at.isoformat() if issued.expires_at else None,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    ensure_permission(user, METRICS_READ)
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
