"""
Case Lifecycle Errors

Typed failures raised by the lifecycle services. Each carries a stable
machine-readable code and the HTTP status the API layer answers with.

Codes follow the pattern: CF_<SPECIFIC>
"""
from typing import Any, Dict, Optional


class CaseFlowError(Exception):
    """Base class for every lifecycle failure."""

    code = "CF_INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging/API responses."""
        result: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(CaseFlowError):
    """Malformed or missing input. Raised before any write."""
    code = "CF_VALIDATION_ERROR"
    http_status = 400


class NotFound(CaseFlowError):
    """Referenced case, scammer, document or account does not exist."""
    code = "CF_NOT_FOUND"
    http_status = 404


class InvalidTransition(CaseFlowError):
    """Target stage is not a valid next stage for the case's current status."""
    code = "CF_INVALID_TRANSITION"
    http_status = 400


class Forbidden(CaseFlowError):
    """Actor's role (or assignment) does not permit the action."""
    code = "CF_FORBIDDEN"
    http_status = 403


class DuplicateStage(CaseFlowError):
    """A completed timeline entry already exists for the stage."""
    code = "CF_DUPLICATE_STAGE"
    http_status = 409


class DependencyFailure(CaseFlowError):
    """Store, renderer or transport unavailable. Safe to retry with backoff."""
    code = "CF_DEPENDENCY_FAILURE"
    http_status = 503
