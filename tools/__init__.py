# Tools module - Tool registry, policy and execution
# Each tool: name, HTTP method, endpoint template, parameter schema
# One executor interprets every descriptor

from .registry import ToolRegistry, Tool, ToolSchema, ToolParameter, HttpMethod, ParameterType
from .policy import PolicyMatcher, PolicyDecision, ApprovalStatus
from .executor import ToolExecutor, ExecutionContext, create_executor, normalize_tool_name
from .catalog import create_default_registry

__all__ = [
    "ToolRegistry",
    "Tool",
    "ToolSchema",
    "ToolParameter",
    "HttpMethod",
    "ParameterType",
    "PolicyMatcher",
    "PolicyDecision",
    "ApprovalStatus",
    "ToolExecutor",
    "ExecutionContext",
    "create_executor",
    "normalize_tool_name",
    "create_default_registry",
]
