"""
API Client Framework
--------------------
Rate-limited, retrying dispatcher for the Meraki Dashboard API.
The API key is read from the environment and never exposed to the caller
or written to a log line.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Optional
import asyncio
import logging
import os
import re

import httpx

from core.errors import (
    ConfigurationError,
    RateLimitExceeded,
    RetryPolicy,
    TransportError,
    UpstreamAPIError,
)
from .rate_limiter import RateLimitConfig, RateLimiter


DEFAULT_BASE_URL = "https://api.meraki.com/api/v1"
API_KEY_PATTERN = re.compile(r"^[a-fA-F0-9]{40}$")

# Response headers we care about
RETRY_AFTER_HEADER = "retry-after"
RATE_LIMIT_HEADERS = ("x-rate-limit-limit", "x-rate-limit-remaining", "x-rate-limit-reset")

STATUS_MESSAGES = {
    400: "Bad Request",
    401: "Unauthorized - Invalid API key",
    403: "Forbidden - Insufficient permissions",
    404: "Not Found",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class APIStatus(Enum):
    """Status of an API response."""
    SUCCESS = auto()
    RATE_LIMITED = auto()
    AUTH_ERROR = auto()
    NOT_FOUND = auto()
    CLIENT_ERROR = auto()
    SERVER_ERROR = auto()


def classify_status(status_code: int) -> APIStatus:
    """Map an HTTP status code onto an APIStatus."""
    if 200 <= status_code < 300:
        return APIStatus.SUCCESS
    if status_code == 429:
        return APIStatus.RATE_LIMITED
    if status_code in (401, 403):
        return APIStatus.AUTH_ERROR
    if status_code == 404:
        return APIStatus.NOT_FOUND
    if status_code >= 500:
        return APIStatus.SERVER_ERROR
    return APIStatus.CLIENT_ERROR


@dataclass
class APIConfig:
    """Configuration for an API client."""
    name: str = "meraki"
    base_url: str = DEFAULT_BASE_URL
    api_key_env: str = "MERAKI_API_KEY"  # Environment variable name (NOT the actual key)
    base_url_env: str = "MERAKI_API_BASE_URL"
    timeout_seconds: float = 30.0
    max_retries: int = 3  # Total attempts, first try included
    initial_backoff_seconds: float = 1.0
    rate_limit_per_second: int = 5
    log_api_calls: bool = True
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class APIResponse:
    """Successful response from an API call."""
    status: APIStatus
    data: Optional[Any] = None
    status_code: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    response_time_ms: float = 0.0
    attempts: int = 1

    @property
    def success(self) -> bool:
        return self.status == APIStatus.SUCCESS

    @property
    def rate_limit_remaining(self) -> Optional[int]:
        """Advisory remaining-quota counter, if the server sent one."""
        value = self.headers.get("x-rate-limit-remaining")
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None


class APIClient:
    """
    Dispatcher for outbound API calls.

    Rules:
    - API key loaded from environment only, sent as a bearer token
    - Every attempt passes through the shared RateLimiter
    - 429 and 5xx are retried with backoff, other 4xx are terminal
    - Timeouts and connection failures raise TransportError, never retried
    - Logs carry method and path only
    """

    def __init__(
        self,
        config: Optional[APIConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or APIConfig()
        self._logger = logging.getLogger(f"meraki.api.{self.config.name}")
        self._rate_limiter = rate_limiter or RateLimiter(RateLimitConfig(
            max_requests=self.config.rate_limit_per_second,
            interval_seconds=1.0,
        ))
        self._transport = transport
        self._sleep = sleep
        self._http: Optional[httpx.AsyncClient] = None

        self.base_url = os.getenv(self.config.base_url_env) or self.config.base_url

        # Load API key from environment
        self._api_key = os.getenv(self.config.api_key_env)
        if not self._api_key:
            self._logger.warning(f"API key not found: {self.config.api_key_env}")
        elif not API_KEY_PATTERN.match(self._api_key):
            self._logger.warning(
                f"API key in {self.config.api_key_env} is not 40 hexadecimal characters"
            )

    @property
    def is_configured(self) -> bool:
        """Check if API client is properly configured."""
        return bool(self._api_key)

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "meraki-mcp/0.1.0",
        }
        headers.update(self.config.headers)

        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        return headers

    def _client(self) -> httpx.AsyncClient:
        """Shared connection pool, created on first use."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url.rstrip("/"),
                timeout=self.config.timeout_seconds,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make a GET request."""
        return await self.submit("GET", path, params)

    async def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make a POST request."""
        return await self.submit("POST", path, data)

    async def put(self, path: str, data: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make a PUT request."""
        return await self.submit("PUT", path, data)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make a DELETE request."""
        return await self.submit("DELETE", path, params)

    async def submit(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> APIResponse:
        """
        Send one logical request, retrying transient failures.

        GET and DELETE send `params` as the query string; POST and PUT send
        them as the JSON body.
        """
        if not self.is_configured:
            raise ConfigurationError(
                f"Missing required environment variable: {self.config.api_key_env}",
                details={"env": self.config.api_key_env},
            )

        method = method.upper()
        request_kwargs: Dict[str, Any] = {}
        if params:
            if method in ("POST", "PUT"):
                request_kwargs["json"] = params
            else:
                request_kwargs["params"] = _query_params(params)

        return await self._send_with_retry(method, path, request_kwargs)

    async def _send_with_retry(
        self,
        method: str,
        path: str,
        request_kwargs: Dict[str, Any],
    ) -> APIResponse:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send_once(method, path, request_kwargs, attempt)
            except RateLimitExceeded as e:
                category, retry_after, final_error = e.category, e.retry_after, e.upstream
            except UpstreamAPIError as e:
                if not RetryPolicy.is_retryable_status(e.status_code):
                    raise
                category, retry_after, final_error = e.category, None, e

            if attempt >= self.config.max_retries or not RetryPolicy.should_retry(category, attempt):
                self._logger.error(
                    f"{method} {path} failed after {attempt} attempts ({final_error.status_code})",
                    extra={"method": method, "path": path, "status_code": final_error.status_code},
                )
                raise final_error

            delay = retry_after if retry_after is not None else self.config.initial_backoff_seconds
            self._logger.warning(
                f"{method} {path} returned {final_error.status_code}, "
                f"retrying in {delay:.2f}s (attempt {attempt}/{self.config.max_retries})",
                extra={"method": method, "path": path, "attempt": attempt},
            )
            # Backoff happens outside the limiter so the slot is free meanwhile
            await self._sleep(delay)

    async def _send_once(
        self,
        method: str,
        path: str,
        request_kwargs: Dict[str, Any],
        attempt: int,
    ) -> APIResponse:
        """One admitted attempt. Raises for every non-success outcome."""
        async with self._rate_limiter:
            if self.config.log_api_calls:
                self._logger.info(
                    f"{method} {path}",
                    extra={"method": method, "path": path, "attempt": attempt},
                )
            start_time = datetime.now()
            try:
                # Upper bound for the whole exchange, body download included
                response = await asyncio.wait_for(
                    self._client().request(method, path, **request_kwargs),
                    timeout=self.config.timeout_seconds,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                self._logger.error(f"{method} {path} timed out", extra={"method": method, "path": path})
                raise TransportError(
                    f"Request timed out after {self.config.timeout_seconds}s",
                    reason="timeout",
                ) from e
            except httpx.TransportError as e:
                self._logger.error(
                    f"{method} {path} network error: {type(e).__name__}",
                    extra={"method": method, "path": path},
                )
                raise TransportError(f"Network error: {type(e).__name__}", reason="network") from e

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
        status = classify_status(response.status_code)

        if status == APIStatus.SUCCESS:
            data = _decode_body(response)
            if isinstance(data, str):
                self._logger.warning(
                    f"{method} {path} returned a non-JSON body",
                    extra={"method": method, "path": path, "status_code": response.status_code},
                )
            return APIResponse(
                status=status,
                data=data,
                status_code=response.status_code,
                headers=_rate_headers(response),
                response_time_ms=elapsed_ms,
                attempts=attempt,
            )

        error = UpstreamAPIError(
            response.status_code,
            _error_message(response),
            _decode_body(response),
        )
        if status == APIStatus.RATE_LIMITED:
            raise RateLimitExceeded(error, retry_after=_retry_after(response))
        raise error


def _query_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten parameters for the query string.

    Lists use the `key[]` convention of the Dashboard API, booleans are
    lowercased and None values are dropped.
    """
    query: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            query[f"{key}[]"] = [str(v) for v in value]
        else:
            query[key] = value
    return query


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Retry-After hint in seconds, or None if absent or unparseable."""
    value = response.headers.get(RETRY_AFTER_HEADER)
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _rate_headers(response: httpx.Response) -> Dict[str, str]:
    return {
        name: response.headers[name]
        for name in RATE_LIMIT_HEADERS + (RETRY_AFTER_HEADER,)
        if name in response.headers
    }


def _decode_body(response: httpx.Response) -> Any:
    """Decode a JSON body; empty bodies become None, non-JSON bodies stay text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(response: httpx.Response) -> str:
    """Extract a readable error message from an error response."""
    data = _decode_body(response)

    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return ", ".join(str(e) for e in errors)
        if data.get("error"):
            return str(data["error"])

    if isinstance(data, str) and data.strip():
        return data.strip()

    return STATUS_MESSAGES.get(response.status_code, f"HTTP {response.status_code} Error")
