"""CaseFlow - Data Models"""
from .db_models import (
    # Enums
    CaseStage, EntryStatus, ActorRole, AuthorityCategory, ScammerStatus, CasePriority,
    # Tables
    UserDB, CaseDB, TimelineEntryDB, ScammerProfileDB, CaseActionDB,
    LegalDocumentDB, NotificationAttemptDB, RecipientConfigDB,
)
from .intake import IntakeSubmission, ScammerDetails
from .principal import Principal, SYSTEM_PRINCIPAL

__all__ = [
    "CaseStage", "EntryStatus", "ActorRole", "AuthorityCategory", "ScammerStatus", "CasePriority",
    "UserDB", "CaseDB", "TimelineEntryDB", "ScammerProfileDB", "CaseActionDB",
    "LegalDocumentDB", "NotificationAttemptDB", "RecipientConfigDB",
    "IntakeSubmission", "ScammerDetails",
    "Principal", "SYSTEM_PRINCIPAL",
]
