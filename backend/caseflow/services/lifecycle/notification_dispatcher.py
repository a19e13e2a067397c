"""
Notification Dispatcher

Sends the legal notice to the requested authority categories and reports
every outcome. One category failing (error, exception or timeout) never
stops the others, and the returned map always covers every requested
category. The dispatcher performs no retries; the case service decides
whether to re-dispatch a failed subset.

All categories are sent concurrently and collected against one deadline.
A send that overran the deadline keeps running in its worker thread; until
it returns, the same (case, category) is not sent again.

Each send is recorded as a NotificationAttemptDB row for audit.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    AuthorityCategory, NotificationAttemptDB, RecipientConfigDB, utcnow,
)
from ...models.principal import Principal
from .errors import ValidationError

logger = logging.getLogger(__name__)

NOT_PROVIDED = "Not provided"

LEGAL_NOTICE = (
    "This complaint is filed under Section 91 of the Code of Criminal Procedure (CrPC) "
    "and requires immediate investigation."
)


class _InFlightSends:
    """(case id, category) pairs whose send has not returned yet, timed-out ones included."""

    def __init__(self):
        self._keys = set()
        self._lock = threading.Lock()

    def claim(self, key) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key) -> None:
        with self._lock:
            self._keys.discard(key)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._keys


_in_flight = _InFlightSends()


# =============================================================================
# TEMPLATES
# =============================================================================

_CASE_BLOCK = """CASE DETAILS:
- Case ID: {case_code}
- Legal Document No: {document_number}
- Victim: {victim_name}
- Victim Phone: {victim_phone}
- Victim Email: {victim_email}
- Amount Lost: {amount}
- Incident Date: {incident_date}
- Description: {description}

EVIDENCE:
- Total Evidence Files: {evidence_count}
"""

_SIGNATURE = """
This is an automated message from the 91 CrPC Fraud Reporting System.

Best regards,
Fraud Investigation Team
Cyber Crime Division
"""

TEMPLATES: Dict[AuthorityCategory, Dict[str, str]] = {
    AuthorityCategory.TELECOM: {
        "subject": "URGENT: Fraud Complaint - Telecom Department - Case ID: {case_code}",
        "body": (
            "Dear Telecom Department,\n\n"
            "We are writing to report a fraudulent activity involving the following phone number "
            "that requires immediate attention:\n\n"
            "SCAMMER DETAILS:\n"
            "- Phone Number: {scammer_phone}\n"
            "- Name: {scammer_name}\n"
            "- Address: {scammer_address}\n"
            "- Email: {scammer_email}\n\n"
            + _CASE_BLOCK +
            "\nLEGAL NOTICE:\n" + LEGAL_NOTICE + " The fraudulent use of this phone number has caused "
            "financial loss to the victim.\n\n"
            "Please take necessary action against this number and provide us with updates on the "
            "investigation within 48 hours.\n"
            + _SIGNATURE
        ),
    },
    AuthorityCategory.BANKING: {
        "subject": "URGENT: Banking Fraud Complaint - Case ID: {case_code}",
        "body": (
            "Dear Bank Authority,\n\n"
            "We are reporting a fraudulent banking activity involving the following account details "
            "that requires immediate investigation:\n\n"
            "SCAMMER BANK DETAILS:\n"
            "- Bank Account: {scammer_bank_account}\n"
            "- IFSC Code: {scammer_routing_code}\n"
            "- UPI ID: {scammer_payment_handle}\n"
            "- Name: {scammer_name}\n"
            "- Phone: {scammer_phone}\n"
            "- Email: {scammer_email}\n\n"
            + _CASE_BLOCK +
            "\nLEGAL NOTICE:\n" + LEGAL_NOTICE + " The fraudulent use of this banking information has "
            "caused financial loss to the victim.\n\n"
            "Please investigate this account and request a freeze pending investigation. "
            "We request an initial response within 48 hours.\n"
            + _SIGNATURE
        ),
    },
    AuthorityCategory.NODAL: {
        "subject": "URGENT: Comprehensive Fraud Case - Nodal Officer - Case ID: {case_code}",
        "body": (
            "Dear Nodal Officer,\n\n"
            "We are reporting a fraud case requiring your immediate attention and formal "
            "91 CrPC proceedings:\n\n"
            "SCAMMER DETAILS:\n"
            "- Phone Number: {scammer_phone}\n"
            "- Email: {scammer_email}\n"
            "- UPI ID: {scammer_payment_handle}\n"
            "- Bank Account: {scammer_bank_account}\n"
            "- IFSC Code: {scammer_routing_code}\n"
            "- Name: {scammer_name}\n"
            "- Address: {scammer_address}\n\n"
            + _CASE_BLOCK +
            "- Victim Address: {victim_address}\n"
            "\nLEGAL NOTICE:\n" + LEGAL_NOTICE + " The accused has used multiple channels to defraud "
            "the victim.\n\n"
            "We request expedited processing and an initial response within 48 hours.\n"
            + _SIGNATURE
        ),
    },
}


class _Fields(dict):
    """format_map source that prints missing values as 'Not provided'."""

    def __missing__(self, key):
        return "Unknown" if key.endswith("_name") else NOT_PROVIDED


def _coerce_category(value) -> AuthorityCategory:
    try:
        return AuthorityCategory(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown authority category: {value}",
            details={"allowed": [c.value for c in AuthorityCategory]},
        ) from exc


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    """Per-category rendering, recipient resolution and bounded sends."""

    def __init__(self, db: Session, mailer, timeout: float = config.MAIL_TIMEOUT_SECONDS):
        self.db = db
        self.mailer = mailer
        self.timeout = timeout

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    def resolve_recipient(self, category: AuthorityCategory) -> str:
        """Database override first, then the environment default."""
        override = (
            self.db.query(RecipientConfigDB)
            .filter(RecipientConfigDB.category == category)
            .first()
        )
        if override is not None and override.address:
            return override.address
        return config.DEFAULT_RECIPIENTS[category.value]

    def get_recipients(self) -> Dict[str, Dict[str, Any]]:
        result = {}
        for category in AuthorityCategory:
            override = self.db.query(RecipientConfigDB).filter(RecipientConfigDB.category == category).first()
            result[category.value] = {
                "address": self.resolve_recipient(category),
                "default": config.DEFAULT_RECIPIENTS[category.value],
                "overridden": override is not None,
            }
        return result

    def update_recipients(self, addresses: Dict[str, str], actor: Principal) -> Dict[str, Dict[str, Any]]:
        """Upsert recipient overrides. Flushed, committed by the caller."""
        for key, address in addresses.items():
            category = _coerce_category(key)
            address = (address or "").strip()
            if "@" not in address:
                raise ValidationError(f"Invalid email address for {category.value}: {address!r}")
            row = self.db.query(RecipientConfigDB).filter(RecipientConfigDB.category == category).first()
            if row is None:
                row = RecipientConfigDB(category=category, address=address, updated_by=actor.id)
                self.db.add(row)
            else:
                row.address = address
                row.updated_by = actor.id
            logger.info(f"Recipient for {category.value} set to {address} by {actor.id}")
        self.db.flush()
        return self.get_recipients()

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def render(
        self,
        category: AuthorityCategory,
        case_context: Dict[str, Any],
        scammer_context: Dict[str, Any],
        document: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, str]:
        """Return (subject, body) for one category."""
        fields = _Fields()
        for key, value in (case_context or {}).items():
            if value not in (None, ""):
                fields[key] = value
        for key, value in (scammer_context or {}).items():
            if value not in (None, ""):
                fields[f"scammer_{key}"] = value
        if document and document.get("document_number"):
            fields["document_number"] = document["document_number"]
        if "amount" in fields:
            fields["amount"] = f"INR {float(fields['amount']):,.2f}"
        fields.setdefault("evidence_count", 0)

        template = TEMPLATES[category]
        return template["subject"].format_map(fields), template["body"].format_map(fields)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(
        self,
        document: Optional[Dict[str, Any]],
        case_context: Dict[str, Any],
        scammer_context: Dict[str, Any],
        recipients: Iterable,
    ) -> Dict[str, Dict[str, Any]]:
        """
        Send to every requested category and return
        {category: {success, recipient, error, message_id, sent_at}}.

        `document` is {"document_number", "filename", "pdf_bytes"}; the PDF is
        attached when present. Attempts are flushed, not committed.
        """
        categories: List[AuthorityCategory] = []
        for value in recipients:
            category = _coerce_category(value)
            if category not in categories:
                categories.append(category)
        if not categories:
            raise ValidationError("At least one authority category is required")

        attachments = []
        if document and document.get("pdf_bytes"):
            attachments.append((document.get("filename", "91crpc.pdf"), document["pdf_bytes"], "application/pdf"))

        dispatch_id = str(uuid4())
        case_id = case_context.get("case_id")
        results: Dict[str, Dict[str, Any]] = {}

        prepared = []
        for category in categories:
            address = self.resolve_recipient(category)
            subject, body = self.render(category, case_context, scammer_context, document)
            prepared.append((category, address, subject, body))

        executor = ThreadPoolExecutor(max_workers=len(prepared), thread_name_prefix="notify")
        try:
            pending = {}
            for category, address, subject, body in prepared:
                key = (case_id, category.value)
                if not _in_flight.claim(key):
                    pending[category] = None
                    continue
                future = executor.submit(self._send, address, subject, body, attachments)
                future.add_done_callback(lambda _f, key=key: _in_flight.release(key))
                pending[category] = future

            deadline = time.monotonic() + self.timeout
            for category, address, subject, body in prepared:
                outcome = self._collect(pending[category], deadline)
                sent_at = utcnow()

                self.db.add(NotificationAttemptDB(
                    id=str(uuid4()),
                    dispatch_id=dispatch_id,
                    case_id=case_id,
                    category=category,
                    recipient=address,
                    subject=subject,
                    body=body,
                    success=outcome["success"],
                    message_id=outcome.get("message_id"),
                    error=outcome.get("error"),
                    sent_at=sent_at,
                ))
                results[category.value] = {
                    "success": outcome["success"],
                    "recipient": address,
                    "error": outcome.get("error"),
                    "message_id": outcome.get("message_id"),
                    "sent_at": sent_at.isoformat(),
                    "dispatch_id": dispatch_id,
                }
                if outcome["success"]:
                    logger.info(f"Notice for case {case_id} sent to {category.value} <{address}>")
                else:
                    logger.warning(f"Notice for case {case_id} to {category.value} <{address}> failed: {outcome.get('error')}")
        finally:
            # A hung send keeps its worker thread; do not wait for it
            executor.shutdown(wait=False)

        self.db.flush()
        return results

    def _send(self, address, subject, body, attachments):
        if attachments and getattr(self.mailer, "supports_attachments", False):
            return self.mailer.send(address, subject, body, attachments=attachments)
        return self.mailer.send(address, subject, body)

    def _collect(self, future, deadline: float) -> Dict[str, Any]:
        if future is None:
            return {"success": False, "message_id": None, "error": "An earlier send to this authority is still in progress"}
        try:
            outcome = future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            return {
                "success": False,
                "message_id": None,
                "error": f"Send timed out after {self.timeout:g}s; delivery unknown",
            }
        except Exception as exc:
            return {"success": False, "message_id": None, "error": f"{type(exc).__name__}: {exc}"}

        if not isinstance(outcome, dict):
            return {"success": False, "message_id": None, "error": "Mailer returned an invalid result"}
        return {
            "success": bool(outcome.get("success")),
            "message_id": outcome.get("message_id") or outcome.get("messageId"),
            "error": None if outcome.get("success") else (outcome.get("error") or "Unknown delivery failure"),
        }

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def history(self, case_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        query = self.db.query(NotificationAttemptDB)
        if case_id:
            query = query.filter(NotificationAttemptDB.case_id == case_id)
        attempts = query.order_by(NotificationAttemptDB.sent_at.desc()).limit(limit).all()
        return [
            {
                "id": a.id,
                "dispatch_id": a.dispatch_id,
                "case_id": a.case_id,
                "category": a.category.value,
                "recipient": a.recipient,
                "subject": a.subject,
                "success": a.success,
                "message_id": a.message_id,
                "error": a.error,
                "sent_at": a.sent_at.isoformat() if a.sent_at else None,
            }
            for a in attempts
        ]
