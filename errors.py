"""
Exception taxonomy for the recipe ingest pipeline.

Transport-level errors (TransportError and subclasses) are raised by the
adapters in entity_store.py, llm_client.py and source_adapters.py and are
classified by the ResilientExecutor. Everything above the executor only
sees the domain errors (InsufficientContent, MissingTitle) or the
executor's own verdicts (RetryExhausted, RateLimited, SessionExpired,
AccessDenied).
"""

from typing import Any, Dict, Optional


class IngestError(Exception):
    """
    Base exception for ingest errors.

    Attributes:
        message: Human-readable error description
        operation: The operation that failed (e.g., "extract_recipe", "create")
        details: Additional context (e.g., HTTP status code, attempt count)
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context."""
        parts = [self.message]
        if self.operation:
            parts.insert(0, f"[{self.operation}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


# =============================================================================
# TRANSPORT
# =============================================================================

class TransportError(IngestError):
    """An external call failed (HTTP status, malformed response)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if status_code is not None:
            details['status_code'] = status_code
        if response_body:
            details['response'] = response_body[:200] + "..." if len(response_body) > 200 else response_body
        super().__init__(message, operation, details)
        self.status_code = status_code
        self.response_body = response_body


class NetworkUnavailable(TransportError, ConnectionError):
    """The remote service could not be reached at all (offline, DNS, refused)."""


# =============================================================================
# DOMAIN
# =============================================================================

class InsufficientContent(IngestError):
    """Extracted text is empty or shorter than the minimum for its source."""

    def __init__(self, length: int, minimum: int, source_kind: str = "text"):
        super().__init__(
            f"Extracted text is too short ({length} < {minimum} characters). "
            f"Please try a different source.",
            operation="normalize",
            details={'source': source_kind},
        )
        self.length = length
        self.minimum = minimum


class MissingTitle(IngestError):
    """Validation hard-stop: the extracted recipe has no title."""

    def __init__(self):
        super().__init__("Recipe title is required", operation="validate")


class InvalidSource(IngestError):
    """RawSource rejected at the adapter boundary (MIME type, size, kind)."""


class InvalidTransition(IngestError):
    """A pipeline stage change that the stage machine does not allow."""


class PipelineCancelled(IngestError):
    """The pipeline was cancelled; no further attempts are scheduled."""


class PhotoAlreadyExists(IngestError):
    """An ingredient photo with this canonical name already exists."""


# =============================================================================
# EXECUTOR VERDICTS
# =============================================================================

class RetryExhausted(IngestError):
    """Transient-error budget consumed. Callers offer a retry action."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 attempts: int = 0, last_error: Optional[BaseException] = None):
        super().__init__(message, operation, {'attempts': attempts})
        self.attempts = attempts
        self.last_error = last_error


class RateLimited(RetryExhausted):
    """429 responses persisted through every attempt."""

    def __init__(self, operation: Optional[str] = None, attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        super().__init__(
            "Too many requests. Please wait a moment and try again.",
            operation, attempts, last_error,
        )


class SessionExpired(IngestError):
    """401 from a remote service; never retried."""

    def __init__(self, operation: Optional[str] = None):
        super().__init__("Session expired. Please sign in again.", operation)


class AccessDenied(IngestError):
    """403 from a remote service; never retried."""

    def __init__(self, operation: Optional[str] = None):
        super().__init__("Access denied.", operation)


class NetworkQueuedWrite(IngestError):
    """
    Sentinel: a write hit an unreachable network.

    Not an error for the end user. EntityWriter catches it, stores the
    operation in the offline queue and reports a deferred success.
    """

    def __init__(self, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__("Network unavailable - write deferred to offline queue", operation)
        self.cause = cause


def http_error(service: str, status: int, body: Optional[str], operation: Optional[str] = None) -> TransportError:
    """TransportError for a non-2xx response from ``service``."""
    return TransportError(
        f"{service} error {status}",
        operation=operation,
        status_code=status,
        response_body=body,
    )
