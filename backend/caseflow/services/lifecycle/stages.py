"""
Case Stage Table

Single source for stage metadata and legal transitions. Every caller
(orchestrator, ledger projection, routers, available-actions) reads these
tables; none re-declares its own status vocabulary.
"""
from typing import Any, Dict, List, Tuple

from ...models.db_models import CaseStage, ActorRole


# =============================================================================
# STAGE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# "entry_roles" lists who may move a case INTO the stage.
# - SYSTEM: automatic cascade after submission (verify, generate notice)
# - ADMIN: verification, notice generation, notification, authorization,
#          assignment, rejection
# - POLICE: investigation, evidence, resolution
# - USER: resubmission of a rejected report
#
# "closed" is reachable only from "resolved" and is terminal.
#
# =============================================================================

STAGE_CONFIG: Dict[CaseStage, Dict[str, Any]] = {
    CaseStage.REPORT_SUBMITTED: {
        "label": "Report Submitted",
        "description": "Fraud report submitted by the victim",
        "icon": "📄",
        "allowed_transitions": [CaseStage.INFORMATION_VERIFIED, CaseStage.REJECTED],
        "entry_roles": [ActorRole.USER, ActorRole.ADMIN],
    },
    CaseStage.INFORMATION_VERIFIED: {
        "label": "Information Verified",
        "description": "Reported details and suspect identifiers verified",
        "icon": "🔍",
        "allowed_transitions": [CaseStage.CRPC_GENERATED, CaseStage.UNDER_INVESTIGATION],
        "entry_roles": [ActorRole.ADMIN, ActorRole.SYSTEM],
    },
    CaseStage.CRPC_GENERATED: {
        "label": "91 CrPC Generated",
        "description": "Section 91 CrPC application generated",
        "icon": "📋",
        "allowed_transitions": [CaseStage.EMAILS_SENT],
        "entry_roles": [ActorRole.ADMIN, ActorRole.SYSTEM],
    },
    CaseStage.EMAILS_SENT: {
        "label": "Emails Sent",
        "description": "Legal notice sent to telecom, banking and nodal authorities",
        "icon": "📧",
        "allowed_transitions": [CaseStage.AUTHORIZED, CaseStage.UNDER_INVESTIGATION],
        "entry_roles": [ActorRole.ADMIN],
    },
    CaseStage.AUTHORIZED: {
        "label": "Authorized",
        "description": "Case authorized for police action",
        "icon": "✅",
        "allowed_transitions": [CaseStage.ASSIGNED_TO_POLICE],
        "entry_roles": [ActorRole.ADMIN],
    },
    CaseStage.ASSIGNED_TO_POLICE: {
        "label": "Assigned to Police",
        "description": "Case assigned to an investigating officer",
        "icon": "👮",
        "allowed_transitions": [CaseStage.UNDER_INVESTIGATION],
        "entry_roles": [ActorRole.ADMIN],
    },
    CaseStage.UNDER_INVESTIGATION: {
        "label": "Under Investigation",
        "description": "Police investigation in progress",
        "icon": "🕵",
        "allowed_transitions": [CaseStage.EVIDENCE_COLLECTED, CaseStage.RESOLVED],
        "entry_roles": [ActorRole.POLICE],
    },
    CaseStage.EVIDENCE_COLLECTED: {
        "label": "Evidence Collected",
        "description": "Police evidence recorded against the case",
        "icon": "🗂",
        "allowed_transitions": [CaseStage.RESOLVED],
        "entry_roles": [ActorRole.POLICE],
    },
    CaseStage.RESOLVED: {
        "label": "Resolved",
        "description": "Investigation concluded",
        "icon": "✅",
        "allowed_transitions": [CaseStage.CLOSED],
        "entry_roles": [ActorRole.POLICE],
    },
    CaseStage.CLOSED: {
        "label": "Case Closed",
        "description": "Case closed",
        "icon": "🔒",
        "allowed_transitions": [],  # Terminal state
        "entry_roles": [ActorRole.ADMIN, ActorRole.POLICE],
    },
    CaseStage.REJECTED: {
        "label": "Rejected",
        "description": "Report rejected; the reporter may correct and resubmit",
        "icon": "❌",
        "allowed_transitions": [CaseStage.REPORT_SUBMITTED],
        "entry_roles": [ActorRole.ADMIN],
    },
}

# Canonical main-line order used for timeline projection
STAGE_ORDER: List[CaseStage] = [
    CaseStage.REPORT_SUBMITTED,
    CaseStage.INFORMATION_VERIFIED,
    CaseStage.CRPC_GENERATED,
    CaseStage.EMAILS_SENT,
    CaseStage.AUTHORIZED,
    CaseStage.ASSIGNED_TO_POLICE,
    CaseStage.UNDER_INVESTIGATION,
    CaseStage.EVIDENCE_COLLECTED,
    CaseStage.RESOLVED,
    CaseStage.CLOSED,
]


def coerce_stage(value) -> CaseStage:
    """Accept a CaseStage or its string value. Raises ValueError for unknown names."""
    if isinstance(value, CaseStage):
        return value
    return CaseStage(str(value).strip().lower())


def get_stage_config(stage: CaseStage) -> Dict[str, Any]:
    return STAGE_CONFIG.get(stage, {})


def stage_label(stage: CaseStage) -> str:
    return get_stage_config(stage).get("label", stage.value)


def can_transition(from_stage: CaseStage, to_stage: CaseStage) -> Tuple[bool, str]:
    """
    Check if a stage transition is allowed.

    Returns (allowed, reason)
    """
    allowed_transitions = get_stage_config(from_stage).get("allowed_transitions", [])
    if to_stage in allowed_transitions:
        return True, "Transition allowed"
    if not allowed_transitions:
        return False, f"Case is {from_stage.value}; no further transitions are possible"
    return False, f"Cannot transition from {from_stage.value} to {to_stage.value}"


def can_enter(stage: CaseStage, role: ActorRole) -> Tuple[bool, str]:
    """Check whether an actor role may move a case into a stage."""
    entry_roles = get_stage_config(stage).get("entry_roles", [])
    if role in entry_roles:
        return True, "Role allowed"
    roles = ", ".join(r.value for r in entry_roles) or "nobody"
    return False, f"Role {role.value} may not perform {stage.value} (allowed: {roles})"


def is_terminal_stage(stage: CaseStage) -> bool:
    """Check if a stage is terminal (no further transitions)."""
    return len(get_stage_config(stage).get("allowed_transitions", [])) == 0


def get_next_stages(stage: CaseStage) -> List[CaseStage]:
    """Get possible next stages from the current one."""
    return list(get_stage_config(stage).get("allowed_transitions", []))


def stage_metadata(stage: CaseStage) -> Dict[str, Any]:
    """Serializable view of a stage's metadata for API consumers."""
    config = get_stage_config(stage)
    return {
        "stage": stage.value,
        "label": config.get("label", stage.value),
        "description": config.get("description", ""),
        "icon": config.get("icon", "📄"),
        "next_stages": [s.value for s in config.get("allowed_transitions", [])],
        "entry_roles": [r.value for r in config.get("entry_roles", [])],
    }
