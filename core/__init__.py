# Core module - Error model and response bounding
# Shared by the dispatcher and the executor; depends on nothing above it

from .errors import (
    ErrorHandler, ErrorCategory, RetryPolicy, GatewayError,
    ValidationError, UnknownToolError, DuplicateToolError, ConfigurationError,
    UpstreamAPIError, TransportError, RateLimitExceeded,
)
from .bounding import BoundingLimits, ResponseBounder, is_bounded

__all__ = [
    "ErrorHandler", "ErrorCategory", "RetryPolicy", "GatewayError",
    "ValidationError", "UnknownToolError", "DuplicateToolError", "ConfigurationError",
    "UpstreamAPIError", "TransportError", "RateLimitExceeded",
    "BoundingLimits", "ResponseBounder", "is_bounded",
]
