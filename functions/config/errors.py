"""JobLedger error handling.

Custom exceptions and error codes for the document core.
"""

from typing import Any, Dict, List, Optional


# Error Codes
class ErrorCode:
    """Error code constants."""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_SCHEMA = "INVALID_SCHEMA"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"

    # Not Found Errors
    NOT_FOUND = "NOT_FOUND"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    ESTIMATE_NOT_FOUND = "ESTIMATE_NOT_FOUND"
    CHANGE_ORDER_NOT_FOUND = "CHANGE_ORDER_NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    LINE_ITEM_NOT_FOUND = "LINE_ITEM_NOT_FOUND"
    WORK_ENTRY_NOT_FOUND = "WORK_ENTRY_NOT_FOUND"

    # Draft Protocol Errors
    DRAFT_STALE = "DRAFT_STALE"
    DRAFT_TYPE_MISMATCH = "DRAFT_TYPE_MISMATCH"
    NO_PENDING_DRAFT = "NO_PENDING_DRAFT"

    # AI / LLM Errors
    AI_COLLABORATOR_ERROR = "AI_COLLABORATOR_ERROR"
    AI_MALFORMED_RESPONSE = "AI_MALFORMED_RESPONSE"
    LLM_ERROR = "LLM_ERROR"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    LLM_CONTEXT_TOO_LONG = "LLM_CONTEXT_TOO_LONG"

    # Firestore Errors
    FIRESTORE_ERROR = "FIRESTORE_ERROR"
    FIRESTORE_WRITE_FAILED = "FIRESTORE_WRITE_FAILED"


class JobLedgerError(Exception):
    """Base exception for JobLedger errors.

    Provides structured error information for API responses.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(JobLedgerError):
    """Validation failure carrying every violation message.

    Raised before any persistence call; nothing is committed.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        field: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        payload = {**(details or {})}
        if errors:
            payload["errors"] = list(errors)
        if field:
            payload["field"] = field
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=payload
        )
        self.errors = list(errors or [])


class NotFoundError(JobLedgerError):
    """Referenced document, line item or parent does not exist."""

    def __init__(self, entity_type: str, entity_id: str, details: Optional[Dict] = None):
        code = getattr(ErrorCode, f"{entity_type.upper()}_NOT_FOUND", ErrorCode.NOT_FOUND)
        label = entity_type.replace("_", " ").capitalize()
        super().__init__(
            code=code,
            message=f"{label} not found: {entity_id}",
            details={**(details or {}), "entity_type": entity_type, "entity_id": entity_id}
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ExternalCollaboratorError(JobLedgerError):
    """AI collaborator failed or returned something unusable."""

    def __init__(self, message: str, code: str = ErrorCode.AI_COLLABORATOR_ERROR, details: Optional[Dict] = None):
        super().__init__(code=code, message=message, details=details)


class InconsistentStateError(JobLedgerError):
    """Operation targets a draft that is no longer current."""

    def __init__(self, message: str, code: str = ErrorCode.DRAFT_STALE, details: Optional[Dict] = None):
        super().__init__(code=code, message=message, details=details)
