"""
CaseFlow - Police Router
Investigation workflow for officers: assigned cases, investigation,
evidence, resolution and closure.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..auth import require_police
from ..dependencies import get_case_service
from ..models.db_models import CaseStage
from ..models.principal import Principal
from ..services.lifecycle import CaseService

router = APIRouter(prefix="/police", tags=["police"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class EvidenceRequest(BaseModel):
    evidence_type: str = Field(..., description="e.g. call_records, bank_statement, arrest")
    details: Optional[str] = None
    arrest_info: Optional[str] = None
    recommendation: Optional[str] = None


class ResolveRequest(BaseModel):
    summary: str
    outcome: Optional[str] = None
    recovered_amount: Optional[float] = Field(None, ge=0)


class NoteRequest(BaseModel):
    comment: Optional[str] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/cases", response_model=dict)
def assigned_cases(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    officer: Principal = Depends(require_police),
    service: CaseService = Depends(get_case_service),
):
    """Cases assigned to the calling officer."""
    return service.list_assigned_cases(officer, skip=skip, limit=limit)


@router.post("/cases/{case_id}/investigate", response_model=dict)
def start_investigation(
    case_id: str,
    request: NoteRequest,
    officer: Principal = Depends(require_police),
    service: CaseService = Depends(get_case_service),
):
    """Open the investigation. Unassigned cases are assigned to the caller."""
    return service.advance_stage(case_id, CaseStage.UNDER_INVESTIGATION, officer, request.comment)


@router.post("/cases/{case_id}/evidence", response_model=dict)
def collect_evidence(
    case_id: str,
    request: EvidenceRequest,
    officer: Principal = Depends(require_police),
    service: CaseService = Depends(get_case_service),
):
    return service.advance_stage(
        case_id, CaseStage.EVIDENCE_COLLECTED, officer,
        comment=request.details, details={"evidence": request.model_dump()},
    )


@router.post("/cases/{case_id}/resolve", response_model=dict)
def resolve_case(
    case_id: str,
    request: ResolveRequest,
    officer: Principal = Depends(require_police),
    service: CaseService = Depends(get_case_service),
):
    details: Dict[str, Any] = request.model_dump()
    return service.advance_stage(case_id, CaseStage.RESOLVED, officer, comment=request.summary, details=details)


@router.post("/cases/{case_id}/close", response_model=dict)
def close_case(
    case_id: str,
    request: NoteRequest,
    officer: Principal = Depends(require_police),
    service: CaseService = Depends(get_case_service),
):
    """Close a resolved case. Irreversible."""
    return service.advance_stage(case_id, CaseStage.CLOSED, officer, comment=request.comment)
