"""
Case Lifecycle Services

Stage table -> Timeline Ledger -> Scammer Resolver -> Notification Dispatcher,
sequenced by the CaseService orchestrator.
"""

from .errors import (
    CaseFlowError, ValidationError, NotFound, InvalidTransition, Forbidden,
    DuplicateStage, DependencyFailure,
)
from .stages import STAGE_CONFIG, STAGE_ORDER, can_transition, can_enter, get_next_stages, is_terminal_stage
from .timeline_ledger import TimelineLedger
from .scammer_resolver import ScammerResolver, ResolveResult
from .notification_dispatcher import NotificationDispatcher
from .case_service import CaseService

__all__ = [
    "CaseFlowError", "ValidationError", "NotFound", "InvalidTransition", "Forbidden",
    "DuplicateStage", "DependencyFailure",
    "STAGE_CONFIG", "STAGE_ORDER", "can_transition", "can_enter", "get_next_stages", "is_terminal_stage",
    "TimelineLedger", "ScammerResolver", "ResolveResult", "NotificationDispatcher", "CaseService",
]
