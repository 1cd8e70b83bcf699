"""
Tool Executor
-------------
The single interpreter for every tool descriptor.

Pipeline, in order:
defaults -> coercion -> transform_params -> validation -> dispatch ->
transform_response -> bounding

Rules:
- Validation failures never reach the network
- Caller-supplied parameters always win over configured defaults
- All calls are scoped with a call_id for log correlation
- Errors leave `invoke` as structured dicts, never as tracebacks
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote
import logging
import re

import httpx

from api.client import APIClient, APIConfig
from api.rate_limiter import RateLimitConfig, RateLimiter
from core.bounding import BoundingLimits, ResponseBounder
from core.errors import ErrorHandler, ValidationError
from infra.logging import CallContext
from infra.settings import Settings, build_settings

from .catalog import create_default_registry
from .policy import PolicyMatcher
from .registry import HttpMethod, PLACEHOLDER_PATTERN, Tool, ToolRegistry


_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_+")


def normalize_tool_name(name: str) -> str:
    """Remove whitespace, collapse underscore runs and trim underscores."""
    name = _WHITESPACE.sub("", name)
    name = _UNDERSCORES.sub("_", name)
    return name.strip("_")


@dataclass
class ExecutionContext:
    """
    Everything one executor needs, built once at startup.

    The rate limiter inside `client` is the only mutable piece.
    """
    registry: ToolRegistry
    client: APIClient
    policy: PolicyMatcher
    bounder: ResponseBounder
    settings: Settings

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **client_kwargs,
    ) -> "ExecutionContext":
        settings = settings or build_settings()
        rate = settings.rate_limit

        client = APIClient(
            APIConfig(
                timeout_seconds=rate.timeout_seconds,
                max_retries=rate.max_retries,
                initial_backoff_seconds=rate.initial_backoff_seconds,
                rate_limit_per_second=rate.requests_per_second,
                log_api_calls=settings.logging.log_api_calls,
            ),
            rate_limiter=RateLimiter(RateLimitConfig(max_requests=rate.requests_per_second)),
            transport=transport,
            **client_kwargs,
        )

        return cls(
            registry=registry if registry is not None else create_default_registry(),
            client=client,
            policy=PolicyMatcher.from_settings(settings),
            bounder=ResponseBounder(BoundingLimits.from_settings(settings.response_limits)),
            settings=settings,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class ToolExecutor:
    """
    Runs tools through the request pipeline.

    `execute` raises typed GatewayErrors; `invoke` is the outer call
    contract and returns `{"ok": ...}` dicts.
    """

    def __init__(self, context: ExecutionContext):
        self.context = context
        self._errors = ErrorHandler()
        self._logger = logging.getLogger("meraki.tools.executor")

    @property
    def error_handler(self) -> ErrorHandler:
        return self._errors

    async def invoke(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Resolve a tool by name and execute it.

        This is the entry point for outer transports.
        """
        tool_name = normalize_tool_name(name)

        with CallContext() as call_id:
            self._logger.debug(f"Invoking {tool_name} (call_id={call_id})")
            try:
                tool = self.context.registry.require(tool_name)
                result = await self.execute(tool, params or {})
            except Exception as e:
                return {"ok": False, "error": self._errors.handle(e, tool_name)}

        return {"ok": True, "result": result}

    async def execute(self, tool: Tool, raw_params: Dict[str, Any]) -> Any:
        """
        Execute one tool and return its bounded result.

        Raises GatewayError subclasses; nothing is sent upstream unless the
        parameters validate.
        """
        start_time = datetime.now(timezone.utc)
        params = self._prepare(tool, raw_params)

        if tool.method == HttpMethod.COMPOSITE:
            result = await tool.custom_executor(params, self.context.client)
        else:
            path, remaining = self._build_path(tool, params)
            response = await self.context.client.submit(tool.method.value, path, remaining)
            result = response.data
            if tool.transform_response is not None:
                result = tool.transform_response(result)

        bounded = self.context.bounder.bound(result, tool.name)

        execution_time = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        self._logger.info(
            f"Executed {tool.name} in {execution_time:.0f}ms",
            extra={"tool_name": tool.name, "elapsed_ms": round(execution_time, 1)},
        )
        return bounded

    def _prepare(self, tool: Tool, raw_params: Dict[str, Any]) -> Dict[str, Any]:
        """Defaults, coercion, pre-validation hook and validation."""
        schema = tool.schema

        # Only defaults the schema declares; a pattern like *_list may cover
        # tools without pagination
        defaults = {
            key: value
            for key, value in self.context.policy.default_params(tool.name).items()
            if schema.get(key) is not None
        }
        params = {**defaults, **raw_params}

        params = schema.coerce(params)

        if tool.transform_params is not None:
            params = tool.transform_params(params)

        schema.validate(params)

        return {key: value for key, value in params.items() if value is not None}

    @staticmethod
    def _build_path(tool: Tool, params: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Substitute URL-encoded path parameters; the rest stay for the request."""
        for name in tool.path_params:
            if params.get(name) is None:
                raise ValidationError(name, "Path parameter is required")

        path = PLACEHOLDER_PATTERN.sub(
            lambda match: quote(str(params[match.group(1)]), safe=""),
            tool.endpoint,
        )
        remaining = {k: v for k, v in params.items() if k not in tool.path_params}
        return path, remaining


def create_executor(
    settings: Optional[Settings] = None,
    registry: Optional[ToolRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolExecutor:
    """Build a ToolExecutor with a fresh ExecutionContext."""
    return ToolExecutor(ExecutionContext.from_settings(settings, registry, transport))
