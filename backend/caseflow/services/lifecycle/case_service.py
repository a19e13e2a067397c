"""
Case Service

Main orchestration service for the case lifecycle.
Coordinates the stage table, timeline ledger, scammer resolver, legal
document renderer and notification dispatcher.

AUTHORITY MODEL:
- USER: submits reports, resubmits rejected reports
- SYSTEM: automatic cascade after submission (verification, 91 CrPC generation)
- ADMIN: verification, notice generation, notification, authorization,
         police assignment, rejection, closure
- POLICE: investigation, evidence, resolution, closure (own cases only)

TRANSITION GUARANTEES:
- Stage advances for one case are serialized (per-case lock) and guarded by a
  compare-and-set on the stored status.
- A transition is all-or-nothing: the status update, the completed timeline
  entry and the stage side effects commit together or not at all.
- Case status always equals the most recent completed timeline entry of the
  current revision.
- A completed stage is never completed twice (DuplicateStage, HTTP 409).
"""
import hashlib
import logging
from contextlib import contextmanager, nullcontext
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

import pydantic
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    CaseDB, TimelineEntryDB, ScammerProfileDB, CaseActionDB, LegalDocumentDB, UserDB,
    CaseStage, EntryStatus, ActorRole, AuthorityCategory, ScammerStatus, utcnow,
)
from ...models.intake import IntakeSubmission, ScammerDetails, AddressInfo
from ...models.principal import Principal, SYSTEM_PRINCIPAL
from ..documents import render_document, CRPC_91_APPLICATION
from ..mailer import build_mailer
from .errors import (
    CaseFlowError, ValidationError, NotFound, InvalidTransition, Forbidden, DependencyFailure,
)
from .identifiers import generate_case_code, generate_document_number
from .locks import case_locks, KeyedLockRegistry, SCAMMER_RESOLUTION_KEY
from .notification_dispatcher import NotificationDispatcher
from .scammer_resolver import ScammerResolver, profile_to_dict
from .stages import (
    STAGE_ORDER, can_transition, can_enter, coerce_stage, get_next_stages,
    get_stage_config, stage_metadata,
)
from .timeline_ledger import TimelineLedger, entry_to_dict

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 20


def _pydantic_errors(exc: pydantic.ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


# =============================================================================
# CASE SERVICE
# =============================================================================

class CaseService:
    """
    Case lifecycle orchestrator.

    All mutating operations commit their own transaction and raise a
    CaseFlowError subclass on failure, after rolling the session back.
    """

    def __init__(
        self,
        db_session: Session,
        mailer=None,
        renderer: Optional[Callable[[str, Dict[str, Any]], bytes]] = None,
        locks: Optional[KeyedLockRegistry] = None,
        notification_timeout: Optional[float] = None,
    ):
        """Initialize with database session and collaborators."""
        self.db = db_session
        self.ledger = TimelineLedger(db_session)
        self.resolver = ScammerResolver(db_session)
        self.dispatcher = NotificationDispatcher(
            db_session,
            mailer if mailer is not None else build_mailer(),
            timeout=notification_timeout or config.MAIL_TIMEOUT_SECONDS,
        )
        self.renderer = renderer or render_document
        self.locks = locks or case_locks
        self._stage_handlers = {
            CaseStage.REPORT_SUBMITTED: self._on_resubmitted,
            CaseStage.INFORMATION_VERIFIED: self._on_information_verified,
            CaseStage.CRPC_GENERATED: self._on_crpc_generated,
            CaseStage.EMAILS_SENT: self._on_emails_sent,
            CaseStage.ASSIGNED_TO_POLICE: self._on_assigned_to_police,
            CaseStage.UNDER_INVESTIGATION: self._on_under_investigation,
            CaseStage.EVIDENCE_COLLECTED: self._on_evidence_collected,
            CaseStage.RESOLVED: self._on_resolved,
            CaseStage.CLOSED: self._on_closed,
            CaseStage.REJECTED: self._on_rejected,
        }

    # =========================================================================
    # TRANSACTION PLUMBING
    # =========================================================================

    @contextmanager
    def _unit_of_work(self, operation: str):
        try:
            yield
            self.db.commit()
        except CaseFlowError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"{operation} failed in the store: {exc}")
            raise DependencyFailure(f"Storage failure during {operation}; retry later") from exc

    def _resolution_lock(self, needed: bool):
        return self.locks.hold(SCAMMER_RESOLUTION_KEY) if needed else nullcontext()

    def _load_case(self, case_ref: str, refresh: bool = False) -> CaseDB:
        """Find a case by internal id or case code."""
        query = self.db.query(CaseDB).filter(or_(CaseDB.id == case_ref, CaseDB.case_code == case_ref))
        if refresh:
            query = query.populate_existing()
        case = query.first()
        if case is None:
            raise NotFound(f"Case {case_ref} not found", details={"case_id": case_ref})
        return case

    def _code_in_use(self, code: str) -> bool:
        return self.db.query(CaseDB.id).filter(CaseDB.case_code == code).first() is not None

    def _allocate_case_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_case_code()
            if not self._code_in_use(code):
                return code
        raise DependencyFailure("Could not allocate a unique case code")

    def _insert_case(self, case: CaseDB) -> None:
        """
        Insert a new case under a fresh code.

        The existence check can race with a concurrent submission; a unique
        violation on case_code regenerates the code and inserts again. The
        case row is the first write of the submission, so rolling back loses
        nothing else.
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            case.case_code = self._allocate_case_code()
            try:
                self.db.add(case)
                self.db.flush()
                return
            except IntegrityError as exc:
                if "case_code" not in str(exc.orig):
                    raise
                self.db.rollback()
                logger.warning(f"Case code {case.case_code} was taken concurrently; regenerating")
        raise DependencyFailure("Could not allocate a unique case code")

    def _allocate_document_number(self) -> str:
        moment = utcnow()
        for _ in range(MAX_CODE_ATTEMPTS):
            number = generate_document_number(moment)
            if self.db.query(LegalDocumentDB.id).filter(LegalDocumentDB.document_number == number).first() is None:
                return number
            moment += timedelta(milliseconds=1)
        raise DependencyFailure("Could not allocate a unique document number")

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit_case(self, intake: Union[IntakeSubmission, Dict[str, Any]], reporter: Principal) -> Dict[str, Any]:
        """
        Create a case from an intake submission.

        Validates required fields, allocates a case code, records
        report_submitted, links the suspect when identifiers are present and
        runs the automatic cascade (information_verified, crpc_generated).
        Without suspect identifiers the case stays at report_submitted with a
        pending verification entry.
        """
        if reporter.role not in (ActorRole.USER, ActorRole.ADMIN):
            raise Forbidden(f"Role {reporter.role.value} may not submit reports")

        submission = self.parse_intake(intake)
        scammer = submission.scammer if submission.scammer and submission.scammer.has_identifiers() else None

        with self._resolution_lock(scammer is not None):
            with self._unit_of_work("submit_case"):
                case = CaseDB(
                    id=str(uuid4()),
                    case_code=None,
                    reporter_id=reporter.id,
                    reporter_name=submission.victim_name(reporter.display_name),
                    case_type=submission.case_type,
                    description=submission.description,
                    amount=submission.amount,
                    incident_date=_naive_utc(submission.incident_date),
                    location=submission.location,
                    contact_info=submission.contact_info.model_dump(mode="json"),
                    intake_form=submission.model_dump(mode="json"),
                    evidence=[item.model_dump(mode="json") for item in submission.evidence],
                    status=CaseStage.REPORT_SUBMITTED,
                    revision=0,
                    priority=submission.priority,
                    police_evidence=[],
                )
                self._insert_case(case)

                self.ledger.append(
                    case.id,
                    CaseStage.REPORT_SUBMITTED,
                    EntryStatus.COMPLETED,
                    f"Fraud report submitted: {submission.case_type}",
                    reporter,
                    metadata={"case_code": case.case_code, "amount": case.amount},
                    revision=case.revision,
                )
                if scammer is not None:
                    self._link_scammer(case, scammer)
                self._run_cascade(case)

        logger.info(f"Case {case.case_code} submitted by {reporter.id}; status {case.status.value}")
        return self._case_to_dict(case)

    def parse_intake(self, intake: Union[IntakeSubmission, Dict[str, Any]]) -> IntakeSubmission:
        if isinstance(intake, IntakeSubmission):
            return intake
        if not isinstance(intake, dict):
            raise ValidationError("Intake must be an object")
        try:
            return IntakeSubmission.model_validate(intake)
        except pydantic.ValidationError as exc:
            raise ValidationError("Invalid intake submission", details={"errors": _pydantic_errors(exc)}) from exc

    def _link_scammer(self, case: CaseDB, details: ScammerDetails):
        result = self.resolver.resolve(details, case.id, amount=case.amount)
        case.scammer_id = result.scammer_id
        return result

    def _run_cascade(self, case: CaseDB) -> None:
        """Mechanical post-submission stages, run synchronously."""
        if case.scammer_id is None:
            self.ledger.append(
                case.id,
                CaseStage.INFORMATION_VERIFIED,
                EntryStatus.PENDING,
                "Awaiting suspect details before verification",
                SYSTEM_PRINCIPAL,
                metadata={"reason": "missing_scammer_details"},
                revision=case.revision,
            )
            return

        self._apply_transition(
            case, CaseStage.INFORMATION_VERIFIED, SYSTEM_PRINCIPAL,
            "Suspect identifiers resolved automatically", {},
        )
        try:
            self._apply_transition(case, CaseStage.CRPC_GENERATED, SYSTEM_PRINCIPAL, None, {})
        except DependencyFailure as exc:
            # Render failure: nothing for this stage was written; record the attempt
            logger.warning(f"Automatic 91 CrPC generation failed for {case.case_code}: {exc.message}")
            self.ledger.append(
                case.id,
                CaseStage.CRPC_GENERATED,
                EntryStatus.FAILED,
                "Automatic 91 CrPC generation failed",
                SYSTEM_PRINCIPAL,
                metadata={"error": exc.message},
                revision=case.revision,
            )

    # =========================================================================
    # STAGE ADVANCE
    # =========================================================================

    def advance_stage(
        self,
        case_id: str,
        target_stage: Union[CaseStage, str],
        actor: Principal,
        comment: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Move a case to `target_stage`.

        Validates the case exists, the target is a valid next stage for the
        current status and the actor may perform it, then applies the stage's
        side effect, updates the status and records the completed entry.
        Nothing is written when any step fails.
        """
        try:
            target = coerce_stage(target_stage)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown stage: {target_stage}",
                details={"allowed": [s.value for s in CaseStage]},
            ) from exc
        details = dict(details or {})
        comment = (comment or "").strip() or None

        case_pk = self._load_case(case_id).id
        with self.locks.hold(case_pk), self._resolution_lock(bool(details.get("scammer"))):
            with self._unit_of_work("advance_stage"):
                case = self._load_case(case_pk, refresh=True)
                previous = case.status
                self._authorize_transition(case, target, actor)
                entry, output = self._apply_transition(case, target, actor, comment, details)
                if target == CaseStage.REPORT_SUBMITTED:
                    self._run_cascade(case)
                self._record_action(case, target.value, previous, target, actor, comment)
                entry_id = entry.id

        logger.info(
            f"Case {case.case_code}: {previous.value} -> {target.value} "
            f"by {actor.role.value}:{actor.id}; status now {case.status.value}"
        )
        return {
            "case_id": case.id,
            "case_code": case.case_code,
            "previous_status": previous.value,
            "stage": target.value,
            "status": case.status.value,
            "entry_id": entry_id,
            "output": output,
        }

    def _authorize_transition(self, case: CaseDB, target: CaseStage, actor: Principal) -> None:
        allowed, reason = can_transition(case.status, target)
        if not allowed:
            raise InvalidTransition(
                reason,
                details={
                    "current_status": case.status.value,
                    "allowed_next": [s.value for s in get_next_stages(case.status)],
                },
            )
        allowed, reason = can_enter(target, actor.role)
        if not allowed:
            raise Forbidden(reason)
        if actor.role == ActorRole.POLICE and case.assigned_to and case.assigned_to != actor.id:
            raise Forbidden("Case is assigned to another officer")
        if actor.role == ActorRole.USER and case.reporter_id != actor.id:
            raise Forbidden("Only the original reporter may resubmit this case")

    def _apply_transition(
        self,
        case: CaseDB,
        target: CaseStage,
        actor: Principal,
        comment: Optional[str],
        details: Dict[str, Any],
    ) -> Tuple[TimelineEntryDB, Dict[str, Any]]:
        """Side effect, compare-and-set status, completed entry. Caller commits."""
        from_status = case.status
        handler = self._stage_handlers.get(target)
        metadata, output = handler(case, actor, comment, details) if handler else ({}, {})

        metadata = dict(metadata)
        metadata["from_status"] = from_status.value
        if comment:
            metadata["comment"] = comment

        self._compare_and_set_status(case, from_status, target)

        base = get_stage_config(target).get("description", target.value)
        description = f"{base}: {comment}" if comment else base
        entry = self.ledger.append(case.id, target, EntryStatus.COMPLETED, description, actor, metadata, revision=case.revision)
        return entry, output

    def _compare_and_set_status(self, case: CaseDB, expected: CaseStage, target: CaseStage) -> None:
        updated = (
            self.db.query(CaseDB)
            .filter(CaseDB.id == case.id, CaseDB.status == expected)
            .update({CaseDB.status: target, CaseDB.updated_at: utcnow()}, synchronize_session=False)
        )
        if updated != 1:
            raise InvalidTransition(
                "Case status changed concurrently; reload and retry",
                details={"expected_status": expected.value, "target": target.value},
            )
        case.status = target

    def _record_action(
        self,
        case: CaseDB,
        action: str,
        from_status: Optional[CaseStage],
        to_status: Optional[CaseStage],
        actor: Principal,
        comment: Optional[str],
    ) -> CaseActionDB:
        action_row = CaseActionDB(
            id=str(uuid4()),
            case_id=case.id,
            action=action,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            actor_id=actor.id,
            actor_role=actor.role.value,
            actor_name=actor.display_name,
            comment=comment,
        )
        self.db.add(action_row)
        return action_row

    # =========================================================================
    # STAGE SIDE EFFECTS
    # =========================================================================
    # Each handler validates its inputs, mutates the case, and returns
    # (entry metadata, caller-facing output). Raising aborts the transition.

    def _parse_inline_scammer(self, details: Dict[str, Any]) -> Optional[ScammerDetails]:
        raw = details.get("scammer")
        if not raw:
            return None
        try:
            scammer = ScammerDetails.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ValidationError("Invalid scammer details", details={"errors": _pydantic_errors(exc)}) from exc
        return scammer if scammer.has_identifiers() else None

    def _on_resubmitted(self, case, actor, comment, details):
        case.revision = (case.revision or 0) + 1
        case.rejection_reason = None
        scammer = self._parse_inline_scammer(details)
        if scammer is not None:
            self._link_scammer(case, scammer)
        meta = {"resubmission": True, "revision": case.revision}
        return meta, dict(meta)

    def _on_information_verified(self, case, actor, comment, details):
        scammer = self._parse_inline_scammer(details)
        if scammer is not None:
            self._link_scammer(case, scammer)
        if case.scammer_id is not None:
            meta = {"scammer_id": case.scammer_id, "automatic": actor.role == ActorRole.SYSTEM}
            return meta, {"scammer_id": case.scammer_id}
        if details.get("override") and actor.role == ActorRole.ADMIN and comment:
            return {"override": True, "scammer_id": None}, {"override": True}
        raise ValidationError(
            "Scammer details are required for verification; supply them or an admin override with a comment"
        )

    def _on_crpc_generated(self, case, actor, comment, details):
        if not self.ledger.has_completed(case.id, CaseStage.INFORMATION_VERIFIED, case.revision):
            raise InvalidTransition("information_verified must be completed before generating the 91 CrPC application")
        if case.scammer_id is None:
            raise ValidationError("Cannot generate the 91 CrPC application without scammer details")
        document = self._generate_legal_document(case, actor)
        case.legal_document_id = document.id
        meta = {
            "document_id": document.id,
            "document_number": document.document_number,
            "checksum": document.checksum,
        }
        return meta, dict(meta)

    def _on_emails_sent(self, case, actor, comment, details):
        if not self.ledger.has_completed(case.id, CaseStage.CRPC_GENERATED, case.revision):
            raise InvalidTransition("crpc_generated must be completed before notifying authorities")
        document = self._get_case_document(case)
        results = self.dispatcher.dispatch(
            self._document_attachment(document),
            self._case_context(case),
            self._scammer_context(case),
            list(AuthorityCategory),
        )
        case.notification_results = results
        failed = sorted(c for c, r in results.items() if not r["success"])
        meta = {
            "document_id": document.id,
            "results": results,
            "failed_categories": failed,
            "partial_failure": bool(failed),
        }
        return meta, {"results": results, "failed_categories": failed}

    def _on_assigned_to_police(self, case, actor, comment, details):
        officer_id = details.get("officer_id")
        if not officer_id:
            raise ValidationError("officer_id is required to assign a case")
        officer = self.db.query(UserDB).filter(UserDB.id == officer_id).first()
        if officer is None:
            raise NotFound(f"Officer {officer_id} not found")
        if officer.role != ActorRole.POLICE.value:
            raise ValidationError(f"User {officer_id} is not a police officer")
        self._assign(case, officer.id, officer.full_name)
        meta = {"officer_id": officer.id, "officer_name": officer.full_name}
        return meta, dict(meta)

    def _on_under_investigation(self, case, actor, comment, details):
        self_assigned = False
        if case.assigned_to is None and actor.role == ActorRole.POLICE:
            self._assign(case, actor.id, actor.display_name)
            self_assigned = True
        meta = {"officer_id": case.assigned_to, "self_assigned": self_assigned}
        return meta, dict(meta)

    def _on_evidence_collected(self, case, actor, comment, details):
        evidence = details.get("evidence") or details
        if not isinstance(evidence, dict):
            raise ValidationError("evidence must be an object")
        evidence_type = (evidence.get("evidence_type") or "").strip()
        if not evidence_type:
            raise ValidationError("evidence_type is required when recording evidence")
        record = {
            "evidence_type": evidence_type,
            "details": evidence.get("details"),
            "arrest_info": evidence.get("arrest_info"),
            "recommendation": evidence.get("recommendation"),
            "added_by": actor.id,
            "added_at": utcnow().isoformat(),
        }
        case.police_evidence = list(case.police_evidence or []) + [record]
        return dict(record), {"evidence": record, "evidence_count": len(case.police_evidence)}

    def _on_resolved(self, case, actor, comment, details):
        summary = (details.get("summary") or comment or "").strip()
        if not summary:
            raise ValidationError("A resolution summary is required")
        resolution = {
            "summary": summary,
            "outcome": details.get("outcome"),
            "recovered_amount": details.get("recovered_amount"),
            "resolved_by": actor.id,
            "resolved_at": utcnow().isoformat(),
        }
        case.resolution = resolution
        return dict(resolution), {"resolution": resolution}

    def _on_closed(self, case, actor, comment, details):
        closure = {
            "notes": details.get("notes") or comment,
            "closed_by": actor.id,
            "closed_by_role": actor.role.value,
            "closed_at": utcnow().isoformat(),
        }
        case.closure = closure
        return dict(closure), {"closure": closure}

    def _on_rejected(self, case, actor, comment, details):
        if not comment:
            raise ValidationError("A rejection reason (comment) is required")
        case.rejection_reason = comment
        return {"reason": comment}, {"reason": comment}

    def _assign(self, case: CaseDB, officer_id: str, officer_name: str) -> None:
        case.assigned_to = officer_id
        case.assigned_to_name = officer_name
        case.assigned_at = utcnow()

    # =========================================================================
    # LEGAL DOCUMENT
    # =========================================================================

    def _generate_legal_document(self, case: CaseDB, actor: Principal) -> LegalDocumentDB:
        document_number = self._allocate_document_number()
        content = self.document_payload(case, document_number)
        try:
            pdf_bytes = self.renderer(CRPC_91_APPLICATION, content)
        except Exception as exc:
            raise DependencyFailure(f"Legal document rendering failed: {exc}") from exc
        if not pdf_bytes:
            raise DependencyFailure("Legal document renderer returned no content")

        document = LegalDocumentDB(
            id=str(uuid4()),
            case_id=case.id,
            document_number=document_number,
            template_kind=CRPC_91_APPLICATION,
            content=content,
            pdf_bytes=pdf_bytes,
            checksum=hashlib.sha256(pdf_bytes).hexdigest(),
            generated_by=actor.id,
        )
        self.db.add(document)
        self.db.flush()
        logger.info(f"Generated {document_number} for case {case.case_code} ({len(pdf_bytes)} bytes)")
        return document

    def document_payload(self, case: CaseDB, document_number: str) -> Dict[str, Any]:
        """Canonical content the 91 CrPC application is rendered from."""
        form = case.intake_form or {}
        contact = case.contact_info or {}
        gov_ids = form.get("government_ids") or []
        return {
            "document_number": document_number,
            "issued_on": utcnow().strftime("%d %B %Y"),
            "case": {
                "case_code": case.case_code,
                "case_type": case.case_type,
                "amount": case.amount,
                "incident_date": case.incident_date.strftime("%d %B %Y") if case.incident_date else None,
                "location": case.location,
                "description": case.description,
            },
            "victim": {
                "name": case.reporter_name,
                "address": self._victim_address(case),
                "phone": contact.get("phone"),
                "email": contact.get("email"),
                "government_id": ", ".join(f"{g.get('id_type')}: {g.get('id_number')}" for g in gov_ids) or None,
            },
            "accused": self._scammer_context(case, include_counts=True),
            "evidence": list(case.evidence or []),
        }

    def _get_case_document(self, case: CaseDB) -> LegalDocumentDB:
        document = None
        if case.legal_document_id:
            document = self.db.query(LegalDocumentDB).filter(LegalDocumentDB.id == case.legal_document_id).first()
        if document is None:
            raise NotFound(f"No legal document generated for case {case.case_code}")
        return document

    def get_document(self, document_id: str) -> LegalDocumentDB:
        document = self.db.query(LegalDocumentDB).filter(LegalDocumentDB.id == document_id).first()
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        return document

    @staticmethod
    def _document_attachment(document: LegalDocumentDB) -> Dict[str, Any]:
        return {
            "document_number": document.document_number,
            "filename": document.document_number.replace("/", "_") + ".pdf",
            "pdf_bytes": document.pdf_bytes,
        }

    # =========================================================================
    # NOTIFICATION CONTEXT & RETRY
    # =========================================================================

    @staticmethod
    def _victim_address(case: CaseDB) -> Optional[str]:
        address = (case.intake_form or {}).get("address") or {}
        return AddressInfo.model_validate(address).one_line() if address else None

    def _case_context(self, case: CaseDB) -> Dict[str, Any]:
        contact = case.contact_info or {}
        return {
            "case_id": case.id,
            "case_code": case.case_code,
            "case_type": case.case_type,
            "victim_name": case.reporter_name,
            "victim_phone": contact.get("phone"),
            "victim_email": contact.get("email"),
            "victim_address": self._victim_address(case),
            "amount": case.amount,
            "incident_date": case.incident_date.strftime("%d %b %Y") if case.incident_date else None,
            "description": case.description,
            "location": case.location,
            "evidence_count": len(case.evidence or []),
        }

    def _scammer_context(self, case: CaseDB, include_counts: bool = False) -> Dict[str, Any]:
        if case.scammer_id is None:
            return {}
        profile = self.resolver.get(case.scammer_id)
        context = {
            "name": profile.name,
            "phone": profile.phone,
            "email": profile.email,
            "payment_handle": profile.payment_handle,
            "bank_account": profile.bank_account,
            "routing_code": profile.routing_code,
            "address": profile.address,
        }
        if include_counts:
            context["case_count"] = profile.case_count
        return context

    def retry_notifications(self, case_id: str, actor: Principal) -> Dict[str, Any]:
        """
        Re-dispatch the authorities whose latest send failed.

        The emails_sent entry stays the single completed entry; the retry
        outcome is attached to its metadata under "retries".
        """
        if actor.role != ActorRole.ADMIN:
            raise Forbidden("Only administrators may retry notifications")

        case_pk = self._load_case(case_id).id
        with self.locks.hold(case_pk):
            with self._unit_of_work("retry_notifications"):
                case = self._load_case(case_pk, refresh=True)
                entry = self.ledger.completed_entry(case.id, CaseStage.EMAILS_SENT, case.revision)
                if entry is None:
                    raise InvalidTransition(
                        "Authorities have not been notified for this case yet",
                        details={"current_status": case.status.value},
                    )
                snapshot = dict(case.notification_results or {})
                failed = sorted(c for c, r in snapshot.items() if not r.get("success"))
                results: Dict[str, Dict[str, Any]] = {}
                if failed:
                    results = self.dispatcher.dispatch(
                        self._document_attachment(self._get_case_document(case)),
                        self._case_context(case),
                        self._scammer_context(case),
                        failed,
                    )
                    case.notification_results = {**snapshot, **results}
                    retries = list((entry.entry_metadata or {}).get("retries", []))
                    retries.append({
                        "at": utcnow().isoformat(),
                        "by": actor.id,
                        "categories": failed,
                        "results": results,
                    })
                    self.ledger.attach_metadata(entry.id, "retries", retries)
                    self._record_action(case, "retry_notifications", case.status, case.status, actor, None)
                merged = dict(case.notification_results or {})

        still_failed = sorted(c for c, r in merged.items() if not r.get("success"))
        logger.info(f"Notification retry for {case_pk}: retried={failed} still_failed={still_failed}")
        return {
            "case_id": case_pk,
            "retried": failed,
            "results": results,
            "notification_results": merged,
            "failed_categories": still_failed,
        }

    # =========================================================================
    # COMMENTS
    # =========================================================================

    def add_comment(self, case_id: str, actor: Principal, comment: str) -> Dict[str, Any]:
        """Attach a case-worker note to the action log. The status is unchanged."""
        if actor.role not in (ActorRole.ADMIN, ActorRole.POLICE):
            raise Forbidden("Only administrators and police may comment on cases")
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("Comment must not be blank")

        case_pk = self._load_case(case_id).id
        with self.locks.hold(case_pk):
            with self._unit_of_work("add_comment"):
                case = self._load_case(case_pk, refresh=True)
                self._check_read_access(case, actor)
                action_row = self._record_action(case, "comment", case.status, case.status, actor, comment)
                self.db.flush()
                recorded = _action_to_dict(action_row)

        logger.info(f"Comment added to case {case.case_code} by {actor.role.value}:{actor.id}")
        return recorded

    # =========================================================================
    # READS
    # =========================================================================

    def _check_read_access(self, case: CaseDB, principal: Optional[Principal]) -> None:
        if principal is None or principal.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            return
        if principal.role == ActorRole.USER and case.reporter_id != principal.id:
            raise Forbidden("You can only view your own cases")
        if principal.role == ActorRole.POLICE and case.assigned_to not in (None, principal.id):
            raise Forbidden("Case is assigned to another officer")

    def get_case(self, case_id: str, principal: Optional[Principal] = None) -> Dict[str, Any]:
        case = self._load_case(case_id)
        self._check_read_access(case, principal)
        result = self._case_to_dict(case)
        result["scammer"] = profile_to_dict(self.resolver.get(case.scammer_id)) if case.scammer_id else None
        if case.legal_document_id:
            result["legal_document"] = document_to_dict(self._get_case_document(case))
        else:
            result["legal_document"] = None
        return result

    def get_timeline(self, case_id: str, principal: Optional[Principal] = None) -> Dict[str, Any]:
        case = self._load_case(case_id)
        self._check_read_access(case, principal)
        stages = self.ledger.ordered_projection(case.id, case.revision)
        completed = [s for s in stages if s["status"] == EntryStatus.COMPLETED.value]
        return {
            "case_id": case.id,
            "case_code": case.case_code,
            "status": case.status.value,
            "revision": case.revision,
            "stages": stages,
            "entries": [entry_to_dict(e) for e in self.ledger.read(case.id)],
            "progress": {
                "completed": len(completed),
                "total": len(STAGE_ORDER),
            },
        }

    def get_scammer(self, scammer_id: str) -> Dict[str, Any]:
        profile = self.resolver.get(scammer_id)
        result = profile_to_dict(profile)
        linked = []
        if profile.case_ids:
            rows = self.db.query(CaseDB).filter(CaseDB.id.in_(profile.case_ids)).order_by(CaseDB.created_at).all()
            linked = [
                {"id": c.id, "case_code": c.case_code, "status": c.status.value, "amount": c.amount}
                for c in rows
            ]
        result["cases"] = linked
        return result

    def list_cases(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 20,
        principal: Optional[Principal] = None,
    ) -> Dict[str, Any]:
        """
        Page through cases, newest first.

        Filters: status, case_type, reporter_id, assigned_to, q (case code or
        description substring). Reporters only see their own cases and police
        only their assigned ones.
        """
        filters = dict(filters or {})
        limit = max(1, min(int(limit), config.MAX_PAGE_SIZE))
        skip = max(0, int(skip))

        if principal is not None and principal.role == ActorRole.USER:
            filters["reporter_id"] = principal.id
        elif principal is not None and principal.role == ActorRole.POLICE:
            filters["assigned_to"] = principal.id

        query = self.db.query(CaseDB)
        if filters.get("status"):
            try:
                query = query.filter(CaseDB.status == coerce_stage(filters["status"]))
            except ValueError as exc:
                raise ValidationError(f"Unknown status filter: {filters['status']}") from exc
        if filters.get("case_type"):
            query = query.filter(CaseDB.case_type == filters["case_type"])
        if filters.get("reporter_id"):
            query = query.filter(CaseDB.reporter_id == filters["reporter_id"])
        if filters.get("assigned_to"):
            query = query.filter(CaseDB.assigned_to == filters["assigned_to"])
        if filters.get("q"):
            pattern = f"%{str(filters['q']).strip().lower()}%"
            query = query.filter(or_(
                func.lower(CaseDB.case_code).like(pattern),
                func.lower(CaseDB.description).like(pattern),
            ))

        total = query.count()
        cases = query.order_by(CaseDB.created_at.desc(), CaseDB.id).offset(skip).limit(limit).all()
        return {
            "items": [self._case_to_dict(c, brief=True) for c in cases],
            "total": total,
            "skip": skip,
            "limit": limit,
        }

    def list_assigned_cases(self, officer: Principal, skip: int = 0, limit: int = 20) -> Dict[str, Any]:
        if officer.role != ActorRole.POLICE:
            raise Forbidden("Only police officers have assigned cases")
        return self.list_cases(skip=skip, limit=limit, principal=officer)

    def available_actions(self, case_id: str, principal: Principal) -> Dict[str, Any]:
        """Next stages the principal may move this case into."""
        case = self._load_case(case_id)
        self._check_read_access(case, principal)
        actions = []
        for stage in get_next_stages(case.status):
            allowed, _ = can_enter(stage, principal.role)
            if not allowed:
                continue
            if principal.role == ActorRole.POLICE and case.assigned_to and case.assigned_to != principal.id:
                continue
            actions.append(stage_metadata(stage))
        return {"case_id": case.id, "current_status": case.status.value, "available_actions": actions}

    def list_actions(self, case_id: str) -> List[Dict[str, Any]]:
        case = self._load_case(case_id)
        actions = (
            self.db.query(CaseActionDB)
            .filter(CaseActionDB.case_id == case.id)
            .order_by(CaseActionDB.created_at)
            .all()
        )
        return [_action_to_dict(a) for a in actions]

    def dashboard_stats(self) -> Dict[str, Any]:
        counts = dict(
            self.db.query(CaseDB.status, func.count(CaseDB.id)).group_by(CaseDB.status).all()
        )
        by_status = {stage.value: counts.get(stage, 0) for stage in CaseStage}
        total_amount = self.db.query(func.coalesce(func.sum(CaseDB.amount), 0.0)).scalar()
        scammer_count = self.db.query(func.count(ScammerProfileDB.id)).scalar()

        failed_notifications = 0
        for (results,) in self.db.query(CaseDB.notification_results).all():
            if results and any(not r.get("success") for r in results.values()):
                failed_notifications += 1

        return {
            "total_cases": sum(by_status.values()),
            "by_status": by_status,
            "open_cases": sum(v for k, v in by_status.items() if k not in (CaseStage.CLOSED.value, CaseStage.REJECTED.value)),
            "total_amount": float(total_amount or 0.0),
            "scammer_count": scammer_count,
            "cases_with_failed_notifications": failed_notifications,
        }

    def list_police_officers(self) -> List[Dict[str, Any]]:
        """Officers available for assignment, with their open case load."""
        open_counts = dict(
            self.db.query(CaseDB.assigned_to, func.count(CaseDB.id))
            .filter(
                CaseDB.assigned_to.isnot(None),
                CaseDB.status.notin_([CaseStage.CLOSED, CaseStage.REJECTED]),
            )
            .group_by(CaseDB.assigned_to)
            .all()
        )
        officers = (
            self.db.query(UserDB)
            .filter(UserDB.role == ActorRole.POLICE.value)
            .order_by(UserDB.full_name, UserDB.id)
            .all()
        )
        return [
            {
                "id": o.id,
                "full_name": o.full_name,
                "email": o.email,
                "badge_number": o.badge_number,
                "station": o.station,
                "open_cases": open_counts.get(o.id, 0),
            }
            for o in officers
        ]

    # =========================================================================
    # SCAMMER ADMINISTRATION
    # =========================================================================

    def list_scammers(self, status: Optional[str] = None, skip: int = 0, limit: int = 20) -> Dict[str, Any]:
        status_filter = None
        if status:
            try:
                status_filter = ScammerStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown scammer status: {status}") from exc
        limit = max(1, min(int(limit), config.MAX_PAGE_SIZE))
        return self.resolver.list_profiles(status=status_filter, skip=max(0, int(skip)), limit=limit)

    def search_scammers(self, query_text: str, limit: int = 20) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), config.MAX_PAGE_SIZE))
        return [profile_to_dict(p) for p in self.resolver.search(query_text, limit=limit)]

    def update_scammer_status(self, scammer_id: str, status: str, actor: Principal) -> Dict[str, Any]:
        if actor.role not in (ActorRole.ADMIN, ActorRole.POLICE):
            raise Forbidden("Only administrators and police may change scammer status")
        with self._unit_of_work("update_scammer_status"):
            profile = self.resolver.update_status(scammer_id, status, actor)
        return profile_to_dict(profile)

    # =========================================================================
    # RECIPIENTS & HISTORY
    # =========================================================================

    def get_recipients(self) -> Dict[str, Dict[str, Any]]:
        return self.dispatcher.get_recipients()

    def update_recipients(self, addresses: Dict[str, str], actor: Principal) -> Dict[str, Dict[str, Any]]:
        if actor.role != ActorRole.ADMIN:
            raise Forbidden("Only administrators may change notification recipients")
        with self._unit_of_work("update_recipients"):
            self.dispatcher.update_recipients(addresses, actor)
        return self.dispatcher.get_recipients()

    def notification_history(self, case_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        case_pk = self._load_case(case_id).id if case_id else None
        return self.dispatcher.history(case_pk, limit=max(1, min(int(limit), config.MAX_PAGE_SIZE)))

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def _case_to_dict(self, case: CaseDB, brief: bool = False) -> Dict[str, Any]:
        result = {
            "id": case.id,
            "case_code": case.case_code,
            "case_type": case.case_type,
            "amount": case.amount,
            "status": case.status.value,
            "status_label": get_stage_config(case.status).get("label", case.status.value),
            "priority": case.priority.value,
            "revision": case.revision,
            "reporter_id": case.reporter_id,
            "reporter_name": case.reporter_name,
            "scammer_id": case.scammer_id,
            "assigned_to": case.assigned_to,
            "assigned_to_name": case.assigned_to_name,
            "created_at": _iso(case.created_at),
            "updated_at": _iso(case.updated_at),
        }
        if brief:
            return result
        result.update({
            "description": case.description,
            "incident_date": _iso(case.incident_date),
            "location": case.location,
            "contact_info": case.contact_info or {},
            "intake_form": case.intake_form or {},
            "evidence": list(case.evidence or []),
            "legal_document_id": case.legal_document_id,
            "notification_results": case.notification_results,
            "rejection_reason": case.rejection_reason,
            "assigned_at": _iso(case.assigned_at),
            "police_evidence": list(case.police_evidence or []),
            "resolution": case.resolution,
            "closure": case.closure,
        })
        return result


def document_to_dict(document: LegalDocumentDB) -> Dict[str, Any]:
    """Document metadata without the PDF payload."""
    return {
        "id": document.id,
        "case_id": document.case_id,
        "document_number": document.document_number,
        "template_kind": document.template_kind,
        "checksum": document.checksum,
        "size_bytes": len(document.pdf_bytes or b""),
        "generated_by": document.generated_by,
        "created_at": _iso(document.created_at),
    }


def _action_to_dict(action: CaseActionDB) -> Dict[str, Any]:
    return {
        "id": action.id,
        "action": action.action,
        "from_status": action.from_status,
        "to_status": action.to_status,
        "actor": Principal(action.actor_id, ActorRole(action.actor_role), action.actor_name).to_dict(),
        "comment": action.comment,
        "created_at": _iso(action.created_at),
    }
