"""
Case API Routes

Reporter-facing endpoints: submit a complaint, follow its timeline and
resubmit after rejection. Admin and police see cases through the same
read endpoints, scoped to what their role may view.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field

from ..auth import get_current_principal
from ..dependencies import get_case_service
from ..models.db_models import CaseStage
from ..models.principal import Principal
from ..services.lifecycle import CaseService
from ..services.lifecycle.stages import STAGE_ORDER, stage_metadata


router = APIRouter(prefix="/cases", tags=["cases"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ResubmitRequest(BaseModel):
    """Resubmission of a rejected report."""
    comment: Optional[str] = Field(None, description="What was corrected")
    scammer: Optional[Dict[str, Any]] = Field(None, description="Corrected or added suspect details")


class CommentRequest(BaseModel):
    """Case-worker note for the action log."""
    comment: str = Field(..., description="Note text")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def submit_case(
    intake: Dict[str, Any] = Body(..., description="Intake form: case_type, description, amount, incident_date, location, sections"),
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """
    Submit a fraud report.

    Runs verification and 91 CrPC generation automatically when suspect
    identifiers are supplied.
    """
    return service.submit_case(intake, principal)


@router.get("", response_model=dict)
def list_cases(
    status_filter: Optional[str] = Query(None, alias="status"),
    case_type: Optional[str] = None,
    q: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """List cases visible to the caller, newest first."""
    filters = {"status": status_filter, "case_type": case_type, "q": q}
    return service.list_cases(filters, skip=skip, limit=limit, principal=principal)


@router.get("/stages", response_model=dict)
def stage_table():
    """Canonical stage metadata, in timeline order."""
    stages = [stage_metadata(s) for s in STAGE_ORDER]
    stages.append(stage_metadata(CaseStage.REJECTED))
    return {"stages": stages}


@router.get("/{case_id}", response_model=dict)
def get_case(
    case_id: str,
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """Case detail by id or case code."""
    return service.get_case(case_id, principal)


@router.get("/{case_id}/timeline", response_model=dict)
def get_timeline(
    case_id: str,
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """One entry per stage in canonical order, plus the raw entry history."""
    return service.get_timeline(case_id, principal)


@router.get("/{case_id}/available-actions", response_model=dict)
def available_actions(
    case_id: str,
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """Next stages the caller may move this case into."""
    return service.available_actions(case_id, principal)


@router.post("/{case_id}/resubmit", response_model=dict)
def resubmit_case(
    case_id: str,
    request: ResubmitRequest,
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """
    Resubmit a rejected report.

    Starts a new revision and re-runs the automatic cascade.
    """
    details = {"scammer": request.scammer} if request.scammer else {}
    return service.advance_stage(case_id, CaseStage.REPORT_SUBMITTED, principal, request.comment, details)


@router.post("/{case_id}/comment", response_model=dict, status_code=status.HTTP_201_CREATED)
def add_comment(
    case_id: str,
    request: CommentRequest,
    principal: Principal = Depends(get_current_principal),
    service: CaseService = Depends(get_case_service),
):
    """Admin or assigned officer note. Leaves the case status unchanged."""
    return service.add_comment(case_id, principal, request.comment)
