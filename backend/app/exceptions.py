"""
DocDigest Backend: Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for every failure category.
Why:   Services raise domain errors without knowing about HTTP; one set of
       handlers decides status codes and the response shape.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and middleware; caught by global handlers.

Exception Hierarchy:
    DocDigestError (base)
    ├── ValidationError               → 400 Bad Request (client can fix)
    │   └── UnsupportedFormatError    → 400 Bad Request
    ├── ExtractionError               → 422 Unprocessable Entity
    ├── NoExtractableTextError        → 422 Unprocessable Entity
    ├── AuthenticationError           → 401 Unauthorized
    ├── NotFoundError                 → 404 Not Found
    ├── UpstreamSummarizationError    → 429 / 502 / 503 / 504 by reason
    │   └── CircuitBreakerOpenError   → 503 Service Unavailable
    ├── LedgerWriteError              → never rendered (logged at CRITICAL)
    ├── FileStorageError              → 500 Internal Server Error
    ├── DatabaseError                 → 500 Internal Server Error
    └── RateLimitExceededError        → 429 Too Many Requests

Entitlement denial is deliberately absent: it is an expected outcome
returned as a value by the EntitlementGate, not a fault.
"""

from enum import Enum
from typing import Any, Dict, Optional


class DocDigestError(Exception):
    """
    Base exception for all DocDigest application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; only some handlers return it)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(DocDigestError):
    """
    Raised when client input fails validation.

    When:    Missing file, empty file, size exceeded, unknown summary tier.
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "Invalid summary tier 'huge'. Must be one of: short, medium, long",
            "details": {"field": "summary_tier"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnsupportedFormatError(ValidationError):
    """
    Raised when a document's format is not one the extractor understands.

    Supported: pdf, txt, docx, rtf, odt. The caller can retry with another file.
    """

    def __init__(
        self,
        file_format: str,
        supported: Optional[list] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        supported = supported or []
        shown = file_format or "(none)"
        message = (
            f"File type '{shown}' is not supported. "
            f"Allowed types: {', '.join(supported)}"
        )
        ctx = context or {}
        ctx.update({"format": file_format, "allowed": supported})
        super().__init__(message=message, field="file", context=ctx)
        self.file_format = file_format


class ExtractionError(DocDigestError):
    """
    Raised when a supported document cannot be parsed.

    When:    Corrupt PDF, damaged DOCX archive, undecodable bytes.
    HTTP:    422 Unprocessable Entity
    Never retried automatically; the user should try a different file.
    """

    def __init__(
        self,
        file_format: str,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["format"] = file_format
        super().__init__(
            message=message or f"Could not read the {file_format.upper()} document. The file may be damaged.",
            context=ctx,
        )
        self.file_format = file_format


class NoExtractableTextError(DocDigestError):
    """
    Raised when extraction succeeded but produced no usable text.

    When:    Scanned PDF with no text layer, empty DOCX, whitespace-only TXT.
    HTTP:    422 Unprocessable Entity
    """

    def __init__(
        self,
        filename: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if filename:
            ctx["filename"] = filename
        super().__init__(
            message="Could not extract any text from the document. It may be empty or contain only images.",
            context=ctx,
        )


class AuthenticationError(DocDigestError):
    """
    Raised when an authenticated route is called without an identity.

    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Authentication required. Please sign in.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(DocDigestError):
    """
    Raised when a requested resource does not exist (or belongs to someone else).

    When:    GET /api/summaries/{id} with an unknown id or another user's id.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


# ══════════════════════════════════════════════════════════════════════════
# Upstream Summarizer Failures
# ══════════════════════════════════════════════════════════════════════════

class UpstreamFailureReason(str, Enum):
    """Sub-reason of a failed summarization call, preserved for the caller."""

    QUOTA_EXCEEDED = "quota_exceeded"          # billing / account quota
    RATE_LIMITED = "rate_limited"              # transient
    INVALID_CREDENTIAL = "invalid_credential"  # deployment misconfiguration
    MALFORMED_INPUT = "malformed_input"        # rejected request or unparseable reply
    TIMEOUT = "timeout"                        # transient
    UNAVAILABLE = "unavailable"                # transient, includes open circuit


# Only these reasons tell the user to try again shortly.
TRANSIENT_UPSTREAM_REASONS = frozenset({
    UpstreamFailureReason.RATE_LIMITED,
    UpstreamFailureReason.TIMEOUT,
    UpstreamFailureReason.UNAVAILABLE,
})

UPSTREAM_STATUS_CODES = {
    UpstreamFailureReason.QUOTA_EXCEEDED: 503,
    UpstreamFailureReason.RATE_LIMITED: 429,
    UpstreamFailureReason.INVALID_CREDENTIAL: 502,
    UpstreamFailureReason.MALFORMED_INPUT: 502,
    UpstreamFailureReason.TIMEOUT: 504,
    UpstreamFailureReason.UNAVAILABLE: 503,
}

_UPSTREAM_MESSAGES = {
    UpstreamFailureReason.QUOTA_EXCEEDED: (
        "The summarization service quota has been exhausted. "
        "Your usage was not charged. Please contact support."
    ),
    UpstreamFailureReason.RATE_LIMITED: (
        "The summarization service is busy. Please try again shortly."
    ),
    UpstreamFailureReason.INVALID_CREDENTIAL: (
        "The summarization service is misconfigured. Your usage was not charged. "
        "Please contact support."
    ),
    UpstreamFailureReason.MALFORMED_INPUT: (
        "The summarization service could not process this document. "
        "Your usage was not charged."
    ),
    UpstreamFailureReason.TIMEOUT: (
        "The summarization service took too long to respond. Please try again shortly."
    ),
    UpstreamFailureReason.UNAVAILABLE: (
        "The summarization service is temporarily unavailable. Please try again shortly."
    ),
}


class UpstreamSummarizationError(DocDigestError):
    """
    Raised when the external summarizer fails.

    The sub-reason is always preserved; handlers never collapse it into a
    generic error. Status codes follow UPSTREAM_STATUS_CODES.

    Attributes:
        reason:       UpstreamFailureReason
        retryable:    True only for transient reasons
        retry_after:  Suggested seconds before retrying, when known
    """

    def __init__(
        self,
        reason: UpstreamFailureReason,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["reason"] = reason.value
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message or _UPSTREAM_MESSAGES[reason], context=ctx)
        self.reason = reason
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.reason in TRANSIENT_UPSTREAM_REASONS

    @property
    def status_code(self) -> int:
        return UPSTREAM_STATUS_CODES[self.reason]


class CircuitBreakerOpenError(UpstreamSummarizationError):
    """
    Raised when the summarizer circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → transient failures increment counter
        → After 5 failures → OPEN (reject all calls for 60 seconds)
        → After 60 seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again (reset 60-second timer)
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            reason=UpstreamFailureReason.UNAVAILABLE,
            message=(
                "The summarization service is temporarily unavailable due to repeated failures. "
                f"Please try again in approximately {recovery_time} seconds."
            ),
            retry_after=recovery_time,
            context=ctx,
        )
        self.recovery_time = recovery_time


class LedgerWriteError(DocDigestError):
    """
    Raised when a usage increment fails after a successful summarization.

    Never shown to the user: the orchestrator logs it at CRITICAL and still
    returns the summary. Usage is under-counted rather than work duplicated.
    """

    def __init__(
        self,
        user_id: str,
        page_count: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"user_id": user_id, "page_count": page_count})
        super().__init__(message="Failed to record usage", context=ctx)
        self.user_id = user_id
        self.page_count = page_count


class FileStorageError(DocDigestError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, upload directory not writable.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(DocDigestError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error
    The message returned to the client is always generic; details are
    logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(DocDigestError):
    """
    Raised when a caller exceeds the request rate limit.

    HTTP:    429 Too Many Requests (with Retry-After header)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
