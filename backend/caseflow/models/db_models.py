"""
CaseFlow - SQLAlchemy ORM Models
Persistent storage for cases, the case timeline, scammer profiles and notification audit
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Boolean,
    LargeBinary, Index, CheckConstraint, Enum as SQLEnum, text,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_type(enum_cls, length: int = 40) -> SQLEnum:
    # Persist the lower-case values (not member names) so raw SQL filters read naturally
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
    )


# =============================================================================
# ENUMS FOR THE CASE LIFECYCLE
# =============================================================================

class CaseStage(str, Enum):
    """Stages of the investigation lifecycle. Also used as the case status."""
    REPORT_SUBMITTED = "report_submitted"
    INFORMATION_VERIFIED = "information_verified"
    CRPC_GENERATED = "crpc_generated"
    EMAILS_SENT = "emails_sent"
    AUTHORIZED = "authorized"
    ASSIGNED_TO_POLICE = "assigned_to_police"
    UNDER_INVESTIGATION = "under_investigation"
    EVIDENCE_COLLECTED = "evidence_collected"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


class EntryStatus(str, Enum):
    """Status of a single timeline entry."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ActorRole(str, Enum):
    """Roles that may appear as the actor of a timeline entry."""
    USER = "user"
    ADMIN = "admin"
    POLICE = "police"
    SYSTEM = "system"


class AuthorityCategory(str, Enum):
    """Authorities that receive the legal notice."""
    TELECOM = "telecom"
    BANKING = "banking"
    NODAL = "nodal"


class ScammerStatus(str, Enum):
    """Investigation status of a scammer profile."""
    ACTIVE = "active"
    UNDER_INVESTIGATION = "under_investigation"
    BLOCKED = "blocked"


class CasePriority(str, Enum):
    """Triage priority tag."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# =============================================================================
# ACCOUNTS
# =============================================================================

class UserDB(Base):
    """Account for reporters, administrators and police officers."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # user, admin, police
    badge_number = Column(String(50), nullable=True)  # Police only
    station = Column(String(200), nullable=True)  # Police only
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin', 'police')", name="ck_users_role"),
    )


# =============================================================================
# SCAMMER PROFILES
# =============================================================================

class ScammerProfileDB(Base):
    """
    Deduplicated bad-actor record.

    Matched by any single shared identifier (phone, email, payment handle,
    bank account, routing code). Only the scammer resolver mutates the
    linked case set and counters.
    """
    __tablename__ = "scammer_profiles"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(200), nullable=True)
    phone = Column(String(30), nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    payment_handle = Column(String(255), nullable=True, index=True)  # UPI-style handle
    bank_account = Column(String(50), nullable=True, index=True)
    routing_code = Column(String(20), nullable=True, index=True)  # IFSC-style code
    address = Column(Text, nullable=True)

    case_ids = Column(JSON, nullable=False, default=list)
    case_count = Column(Integer, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0.0)

    status = Column(_enum_type(ScammerStatus), nullable=False, default=ScammerStatus.ACTIVE)
    first_seen = Column(DateTime, nullable=False, default=utcnow)
    last_seen = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# CASES
# =============================================================================

class CaseDB(Base):
    """
    One fraud complaint and its investigation record.

    `status` always mirrors the most recent completed timeline entry of the
    current `revision`. Cases are never deleted; `closed` is terminal.
    """
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True)  # UUID
    case_code = Column(String(20), unique=True, nullable=False, index=True)  # FRD-123456-AB12

    reporter_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    reporter_name = Column(String(200), nullable=True)

    case_type = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    incident_date = Column(DateTime, nullable=False)
    location = Column(String(255), nullable=False)
    contact_info = Column(JSON, nullable=True)
    intake_form = Column(JSON, nullable=True)  # Typed intake sections, serialized
    evidence = Column(JSON, nullable=False, default=list)

    scammer_id = Column(String(36), ForeignKey("scammer_profiles.id"), nullable=True, index=True)
    legal_document_id = Column(String(36), nullable=True)  # legal_documents.id
    notification_results = Column(JSON, nullable=True)  # category -> {success, error, sent_at, ...}

    status = Column(_enum_type(CaseStage), nullable=False, default=CaseStage.REPORT_SUBMITTED, index=True)
    revision = Column(Integer, nullable=False, default=0)  # Bumped on rejected -> report_submitted
    priority = Column(_enum_type(CasePriority), nullable=False, default=CasePriority.MEDIUM)
    rejection_reason = Column(Text, nullable=True)

    # Police assignment
    assigned_to = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    assigned_to_name = Column(String(200), nullable=True)
    assigned_at = Column(DateTime, nullable=True)

    police_evidence = Column(JSON, nullable=False, default=list)
    resolution = Column(JSON, nullable=True)
    closure = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_cases_amount_non_negative"),
    )

    # Relationships
    scammer = relationship("ScammerProfileDB", foreign_keys=[scammer_id])
    timeline = relationship(
        "TimelineEntryDB", back_populates="case",
        order_by="TimelineEntryDB.sequence",
    )


class TimelineEntryDB(Base):
    """
    Append-only fact about a case.

    At most one `completed` entry may exist per (case, stage, revision);
    the partial unique index below is the atomic guard for that rule.
    """
    __tablename__ = "case_timeline"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # Per-case insertion order
    revision = Column(Integer, nullable=False, default=0)

    stage = Column(_enum_type(CaseStage), nullable=False)
    label = Column(String(100), nullable=False)
    status = Column(_enum_type(EntryStatus, length=20), nullable=False)
    description = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)  # Set iff status == completed

    actor_id = Column(String(36), nullable=False)
    actor_role = Column(_enum_type(ActorRole, length=20), nullable=False)
    actor_name = Column(String(200), nullable=True)

    entry_metadata = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "uq_case_timeline_completed_stage",
            "case_id", "stage", "revision",
            unique=True,
            sqlite_where=text("status = 'completed'"),
            postgresql_where=text("status = 'completed'"),
        ),
        CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_case_timeline_completed_at",
        ),
    )

    case = relationship("CaseDB", back_populates="timeline")


class CaseActionDB(Base):
    """Audit log of admin and police actions taken on a case."""
    __tablename__ = "case_actions"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    from_status = Column(String(40), nullable=True)
    to_status = Column(String(40), nullable=True)
    actor_id = Column(String(36), nullable=False)
    actor_role = Column(String(20), nullable=False)
    actor_name = Column(String(200), nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# LEGAL DOCUMENTS & NOTIFICATIONS
# =============================================================================

class LegalDocumentDB(Base):
    """Rendered Section 91 CrPC application for a case."""
    __tablename__ = "legal_documents"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    document_number = Column(String(40), unique=True, nullable=False)  # 91CRPC/YYYYMMDD/123456
    template_kind = Column(String(50), nullable=False)
    content = Column(JSON, nullable=False)  # Canonical payload the PDF was rendered from
    pdf_bytes = Column(LargeBinary, nullable=False)
    checksum = Column(String(64), nullable=False)  # sha256 of pdf_bytes
    generated_by = Column(String(36), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class NotificationAttemptDB(Base):
    """One send to one authority. Audit only, never read for control flow."""
    __tablename__ = "notification_attempts"

    id = Column(String(36), primary_key=True)  # UUID
    dispatch_id = Column(String(36), nullable=False, index=True)  # Groups one dispatch cycle
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    category = Column(_enum_type(AuthorityCategory, length=20), nullable=False)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    message_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class RecipientConfigDB(Base):
    """Admin override for an authority's notification address."""
    __tablename__ = "recipient_configs"

    category = Column(_enum_type(AuthorityCategory, length=20), primary_key=True)
    address = Column(String(255), nullable=False)
    updated_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
