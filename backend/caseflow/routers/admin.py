"""
CaseFlow - Admin Router
Stage advances, authority notification, recipient configuration and
the operations dashboard. Every endpoint requires the admin role.
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from ..auth import require_admin
from ..dependencies import get_case_service
from ..models.db_models import CaseStage
from ..models.principal import Principal
from ..services.lifecycle import CaseService
from ..services.lifecycle.case_service import document_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AdvanceStageRequest(BaseModel):
    """Move a case to its next stage."""
    target_stage: CaseStage = Field(..., description="Stage to move the case into")
    comment: Optional[str] = Field(None, description="Reason or note recorded on the timeline")
    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stage input: scammer, override, officer_id, notes",
    )


class RecipientUpdateRequest(BaseModel):
    """Per-category notification address overrides."""
    recipients: Dict[str, str] = Field(..., description="telecom / banking / nodal -> email")


# =============================================================================
# CASE ACTIONS
# =============================================================================

@router.post("/cases/{case_id}/advance", response_model=dict)
def advance_case(
    case_id: str,
    request: AdvanceStageRequest,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """
    Advance a case.

    emails_sent completes even when some authorities fail; the
    per-recipient results are returned and stored on the case.
    """
    return service.advance_stage(case_id, request.target_stage, admin, request.comment, request.details)


@router.post("/cases/{case_id}/notifications/retry", response_model=dict)
def retry_notifications(
    case_id: str,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Re-send the legal notice to the authorities that failed last time."""
    return service.retry_notifications(case_id, admin)


@router.get("/cases/{case_id}/actions", response_model=list)
def list_case_actions(
    case_id: str,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Admin/police action log for a case."""
    return service.list_actions(case_id)


@router.get("/documents/{document_id}", response_model=dict)
def get_document(
    document_id: str,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Legal document metadata."""
    return document_to_dict(service.get_document(document_id))


@router.get("/documents/{document_id}/pdf")
def download_document(
    document_id: str,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Rendered 91 CrPC application."""
    document = service.get_document(document_id)
    filename = document.document_number.replace("/", "_") + ".pdf"
    return Response(
        content=document.pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Content-SHA256": document.checksum,
        },
    )


# =============================================================================
# NOTIFICATION CONFIGURATION
# =============================================================================

@router.get("/recipients", response_model=dict)
def get_recipients(
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Effective authority addresses and whether each is overridden."""
    return service.get_recipients()


@router.put("/recipients", response_model=dict)
def update_recipients(
    request: RecipientUpdateRequest,
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    return service.update_recipients(request.recipients, admin)


@router.get("/notifications", response_model=list)
def notification_history(
    case_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Send attempts, newest first."""
    return service.notification_history(case_id, limit=limit)


# =============================================================================
# DASHBOARD
# =============================================================================

@router.get("/dashboard", response_model=dict)
def dashboard(
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Case counts by status and notification health."""
    return service.dashboard_stats()


@router.get("/police-officers", response_model=list)
def list_police_officers(
    admin: Principal = Depends(require_admin),
    service: CaseService = Depends(get_case_service),
):
    """Officers with their badge, station and open case load, for assignment."""
    return service.list_police_officers()
