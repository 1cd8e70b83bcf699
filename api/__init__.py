# API module - Rate-limited dispatcher for the Dashboard API
# One shared client per process, explicit rate ceiling, secrets isolated

from .client import APIClient, APIConfig, APIResponse, APIStatus
from .rate_limiter import RateLimiter, RateLimitConfig

__all__ = ["APIClient", "APIConfig", "APIResponse", "APIStatus", "RateLimiter", "RateLimitConfig"]
