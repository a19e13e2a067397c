"""
Scammer Profile Routes

Read access to deduplicated scammer profiles and status updates for
admins and police.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..auth import require_roles
from ..dependencies import get_case_service
from ..models.db_models import ActorRole, ScammerStatus
from ..models.principal import Principal
from ..services.lifecycle import CaseService

router = APIRouter(prefix="/scammers", tags=["scammers"])

require_investigator = require_roles(ActorRole.ADMIN, ActorRole.POLICE)


class StatusUpdateRequest(BaseModel):
    status: ScammerStatus


@router.get("", response_model=dict)
def list_scammers(
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_investigator),
    service: CaseService = Depends(get_case_service),
):
    return service.list_scammers(status=status, skip=skip, limit=limit)


@router.get("/search", response_model=list)
def search_scammers(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_investigator),
    service: CaseService = Depends(get_case_service),
):
    """Substring search over name, phone, email, payment handle and bank account."""
    return service.search_scammers(q, limit=limit)


@router.get("/{scammer_id}", response_model=dict)
def get_scammer(
    scammer_id: str,
    principal: Principal = Depends(require_investigator),
    service: CaseService = Depends(get_case_service),
):
    """Profile with its linked cases."""
    return service.get_scammer(scammer_id)


@router.put("/{scammer_id}/status", response_model=dict)
def update_status(
    scammer_id: str,
    request: StatusUpdateRequest,
    principal: Principal = Depends(require_investigator),
    service: CaseService = Depends(get_case_service),
):
    return service.update_scammer_status(scammer_id, request.status.value, principal)
