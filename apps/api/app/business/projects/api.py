from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.projects.schemas import ProjectRead
from app.business.projects.service import project_provisioning_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import PROJECTS_READ, ensure_permission


router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=list[ProjectRead])
def list_projects(
    request: Request,
    deal_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ProjectRead] | JSONResponse:
    try:
        ensure_permission(user, PROJECTS_READ)
        return project_provisioning_service.list_projects(db, deal_id=deal_id, status_filter=status_filter)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_list_failed")


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        ensure_permission(user, PROJECTS_READ)
        return project_provisioning_service.get_project(db, project_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_get_failed")
