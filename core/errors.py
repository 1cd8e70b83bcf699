"""
Error Handling Module
---------------------
Typed errors with classification and retry logic.

Every failure that crosses the call boundary is a GatewayError with a
stable `kind`, a human-readable message and optional machine-readable
details. Stack traces and credentials never leave this process.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional
import logging


class ErrorCategory(Enum):
    """Categories of errors for handling decisions."""
    VALIDATION_ERROR = auto()   # Input validation failed
    USER_ERROR = auto()         # Caller asked for something that doesn't exist
    API_ERROR = auto()          # Remote API rejected the request
    RATE_LIMITED = auto()       # Remote API throttled us (internal only)
    NETWORK_ERROR = auto()      # Never reached the remote API
    TIMEOUT_ERROR = auto()      # Request exceeded its time budget
    SYSTEM_ERROR = auto()       # Configuration or internal error


class GatewayError(Exception):
    """
    Base class for all errors raised by the execution pipeline.

    Subclasses set `kind` and `category`; `details` carries anything a
    caller might want to act on (status code, field name).
    """

    kind = "internal_error"
    category = ErrorCategory.SYSTEM_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form handed to the outer transport."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": dict(self.details),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind}: {self.message})"


class ValidationError(GatewayError):
    """Malformed or missing parameter. Always raised before dispatch."""

    kind = "validation_error"
    category = ErrorCategory.VALIDATION_ERROR

    def __init__(self, field: str, reason: str, value: Any = None):
        super().__init__(
            f"Validation error for field '{field}': {reason}",
            details={"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason
        self.value = value


class UnknownToolError(GatewayError):
    kind = "unknown_tool"
    category = ErrorCategory.USER_ERROR

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found", details={"tool": name})
        self.tool_name = name


class DuplicateToolError(GatewayError):
    kind = "duplicate_tool"

    def __init__(self, name: str):
        super().__init__(f"Tool already registered: {name}", details={"tool": name})
        self.tool_name = name


class ConfigurationError(GatewayError):
    kind = "configuration_error"


class UpstreamAPIError(GatewayError):
    """
    Non-success HTTP status from the remote API.

    Raised only after any applicable retries are exhausted.
    """

    kind = "upstream_api_error"
    category = ErrorCategory.API_ERROR

    def __init__(self, status_code: int, message: str, payload: Any = None):
        details: Dict[str, Any] = {"statusCode": status_code}
        if payload is not None:
            details["payload"] = payload
        super().__init__(message, details=details)
        self.status_code = status_code
        self.payload = payload


class TransportError(GatewayError):
    """The request never produced an HTTP response (timeout, DNS, refused)."""

    kind = "transport_error"
    category = ErrorCategory.NETWORK_ERROR

    def __init__(self, message: str, reason: str = "network"):
        super().__init__(message, details={"reason": reason})
        self.reason = reason
        if reason == "timeout":
            self.category = ErrorCategory.TIMEOUT_ERROR


class RateLimitExceeded(GatewayError):
    """
    Transient 429 from the remote API.

    Internal only: the dispatcher retries it and reports exhaustion as an
    UpstreamAPIError.
    """

    kind = "rate_limited"
    category = ErrorCategory.RATE_LIMITED

    def __init__(self, upstream: "UpstreamAPIError", retry_after: Optional[float] = None):
        super().__init__(
            upstream.message,
            details={"retryAfter": retry_after} if retry_after is not None else None,
        )
        self.upstream = upstream
        self.retry_after = retry_after


class RetryPolicy:
    """
    Retry policy for different error categories.

    Values are total attempts, so 3 means the first try plus two retries.
    Anything that never reached the service is not retried: a timeout has
    no partial result to resume.
    """

    MAX_ATTEMPTS: Dict[ErrorCategory, int] = {
        ErrorCategory.VALIDATION_ERROR: 1,  # No retry - fix input
        ErrorCategory.USER_ERROR: 1,
        ErrorCategory.API_ERROR: 3,         # 5xx only, see is_retryable_status
        ErrorCategory.RATE_LIMITED: 3,
        ErrorCategory.NETWORK_ERROR: 1,
        ErrorCategory.TIMEOUT_ERROR: 1,
        ErrorCategory.SYSTEM_ERROR: 1,
    }

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    @classmethod
    def should_retry(cls, category: ErrorCategory, attempt: int) -> bool:
        """Check whether another attempt is allowed after `attempt` tries."""
        return attempt < cls.MAX_ATTEMPTS.get(category, 1)


@dataclass
class ErrorRecord:
    """One handled error, kept for statistics."""
    category: ErrorCategory
    kind: str
    message: str
    tool_name: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


class ErrorHandler:
    """
    Central error handler with logging and structured reporting.
    """

    def __init__(self, max_history: int = 100):
        self._logger = logging.getLogger("meraki.errors")
        self._error_history: List[ErrorRecord] = []
        self._max_history = max_history

    def handle(self, error: BaseException, tool_name: str = "") -> Dict[str, Any]:
        """
        Log an error and return its structured form.

        Unexpected exceptions are reported as `internal_error` with their
        message only.
        """
        if isinstance(error, GatewayError):
            structured = error.to_dict()
            category = error.category
        else:
            structured = {
                "kind": GatewayError.kind,
                "message": str(error) or type(error).__name__,
                "details": {"type": type(error).__name__},
            }
            category = ErrorCategory.SYSTEM_ERROR

        self._log_error(category, structured, tool_name, error)

        self._error_history.append(ErrorRecord(
            category=category,
            kind=structured["kind"],
            message=structured["message"],
            tool_name=tool_name,
        ))
        if len(self._error_history) > self._max_history:
            self._error_history.pop(0)

        return structured

    def _log_error(
        self,
        category: ErrorCategory,
        structured: Dict[str, Any],
        tool_name: str,
        error: BaseException,
    ) -> None:
        """Log error with appropriate level."""
        level_map = {
            ErrorCategory.USER_ERROR: logging.INFO,
            ErrorCategory.VALIDATION_ERROR: logging.WARNING,
            ErrorCategory.RATE_LIMITED: logging.WARNING,
            ErrorCategory.API_ERROR: logging.ERROR,
            ErrorCategory.NETWORK_ERROR: logging.ERROR,
            ErrorCategory.TIMEOUT_ERROR: logging.ERROR,
            ErrorCategory.SYSTEM_ERROR: logging.CRITICAL,
        }
        level = level_map.get(category, logging.ERROR)

        self._logger.log(
            level,
            f"{category.name}: {structured['message']}",
            extra={"tool_name": tool_name or "-"},
        )

        if not isinstance(error, GatewayError):
            self._logger.debug("Unexpected error", exc_info=error)

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        stats: Dict[str, int] = {}
        for record in self._error_history:
            key = record.category.name
            stats[key] = stats.get(key, 0) + 1
        return stats

    def clear_history(self) -> None:
        """Clear error history."""
        self._error_history.clear()
