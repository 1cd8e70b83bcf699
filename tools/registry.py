"""
Tool Registry
-------------
Declarative, schema-validated descriptors for remote operations.

Each operation is a plain Tool value: name, HTTP method (or COMPOSITE),
endpoint template, parameter schema and optional hooks. One generic
executor interprets every descriptor, so tools are unit-testable without
the network.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import math
import re

import yaml

from core.errors import DuplicateToolError, UnknownToolError, ValidationError


class HttpMethod(str, Enum):
    """How a descriptor is executed."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    COMPOSITE = "COMPOSITE"  # Custom executor fanning out to several calls


class ParameterType(str, Enum):
    """Supported parameter types."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]+)\}")


@dataclass(frozen=True)
class ToolParameter:
    """Definition of a tool parameter."""
    name: str
    type: ParameterType
    description: str = ""
    required: bool = False
    enum: Optional[Tuple[Any, ...]] = None  # Allowed values (array: per item)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    pattern: Optional[str] = None  # Regex for strings (array: per item)
    min_length: Optional[int] = None  # String length or array size
    max_length: Optional[int] = None
    item_type: Optional[ParameterType] = None  # Arrays only

    def to_json_schema(self) -> Dict:
        """Convert to JSON Schema format."""
        schema: Dict[str, Any] = {
            "type": self.type.value,
            "description": self.description
        }

        if self.type == ParameterType.ARRAY:
            items: Dict[str, Any] = {"type": (self.item_type or ParameterType.STRING).value}
            if self.enum:
                items["enum"] = list(self.enum)
            if self.pattern:
                items["pattern"] = self.pattern
            schema["items"] = items
            if self.min_length is not None:
                schema["minItems"] = self.min_length
            if self.max_length is not None:
                schema["maxItems"] = self.max_length
            return schema

        if self.enum:
            schema["enum"] = list(self.enum)
        if self.min_value is not None:
            schema["minimum"] = self.min_value
        if self.max_value is not None:
            schema["maximum"] = self.max_value
        if self.pattern:
            schema["pattern"] = self.pattern
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        if self.max_length is not None:
            schema["maxLength"] = self.max_length

        return schema


def _coerce_number(value: str) -> Any:
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(value)
    return number


def _coerce_integer(value: str) -> Any:
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    number = float(text)
    if not number.is_integer():
        raise ValueError(value)
    return int(number)


def _coerce_boolean(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(value)


def _coerce_array(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# Declared type -> conversion applied to string input. Types not listed are
# never coerced; a failed conversion leaves the string for validation.
COERCIONS: Dict[ParameterType, Callable[[str], Any]] = {
    ParameterType.INTEGER: _coerce_integer,
    ParameterType.NUMBER: _coerce_number,
    ParameterType.BOOLEAN: _coerce_boolean,
    ParameterType.ARRAY: _coerce_array,
}

_TYPE_CHECKS: Dict[ParameterType, Callable[[Any], bool]] = {
    ParameterType.STRING: lambda v: isinstance(v, str),
    ParameterType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
    ParameterType.NUMBER: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    ParameterType.BOOLEAN: lambda v: isinstance(v, bool),
    ParameterType.ARRAY: lambda v: isinstance(v, list),
    ParameterType.OBJECT: lambda v: isinstance(v, dict),
}


@dataclass(frozen=True)
class ToolSchema:
    """Parameter schema for one tool."""
    parameters: Tuple[ToolParameter, ...] = ()

    def get(self, name: str) -> Optional[ToolParameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def to_json_schema(self) -> Dict:
        """Convert to full JSON Schema."""
        return {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.parameters},
            "required": self.required,
            "additionalProperties": False
        }

    def coerce(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert string values to their declared type.

        Already-typed values pass through untouched. Failed conversions keep
        the original string so validation reports them.
        """
        coerced = dict(args)
        for name, value in args.items():
            param = self.get(name)
            if param is None or not isinstance(value, str):
                continue
            convert = COERCIONS.get(param.type)
            if convert is None:
                continue
            try:
                coerced[name] = convert(value)
            except ValueError:
                pass
        return coerced

    def validate(self, args: Dict[str, Any]) -> None:
        """
        Validate arguments against the schema.

        Raises ValidationError for the first failing field.
        """
        for param in self.parameters:
            if param.required and args.get(param.name) is None:
                raise ValidationError(param.name, "This field is required")

        known = {p.name for p in self.parameters}
        for name in args:
            if name not in known:
                raise ValidationError(name, "Unknown parameter")

        for param in self.parameters:
            value = args.get(param.name)
            if value is None:
                continue
            _validate_value(param.name, value, param)


def _validate_value(path: str, value: Any, param: ToolParameter) -> None:
    if not _TYPE_CHECKS[param.type](value):
        raise ValidationError(path, f"Expected {param.type.value}", value)

    if param.type == ParameterType.ARRAY:
        if param.min_length is not None and len(value) < param.min_length:
            raise ValidationError(path, f"Array must contain at least {param.min_length} items", value)
        if param.max_length is not None and len(value) > param.max_length:
            raise ValidationError(path, f"Array must contain at most {param.max_length} items", value)

        item_param = ToolParameter(
            name=param.name,
            type=param.item_type or ParameterType.STRING,
            enum=param.enum,
            pattern=param.pattern,
        )
        for index, item in enumerate(value):
            _validate_value(f"{path}[{index}]", item, item_param)
        return

    if param.enum and value not in param.enum:
        allowed = ", ".join(str(v) for v in param.enum)
        raise ValidationError(path, f"Value must be one of: {allowed}", value)

    if param.type in (ParameterType.INTEGER, ParameterType.NUMBER):
        if param.min_value is not None and value < param.min_value:
            raise ValidationError(path, f"Value must be at least {param.min_value:g}", value)
        if param.max_value is not None and value > param.max_value:
            raise ValidationError(path, f"Value must be at most {param.max_value:g}", value)

    if param.type == ParameterType.STRING:
        if param.min_length is not None and len(value) < param.min_length:
            raise ValidationError(path, f"Must be at least {param.min_length} characters", value)
        if param.max_length is not None and len(value) > param.max_length:
            raise ValidationError(path, f"Cannot exceed {param.max_length} characters", value)
        if param.pattern and not re.fullmatch(param.pattern, value):
            raise ValidationError(path, f"Does not match pattern {param.pattern}", value)


ParamsHook = Callable[[Dict[str, Any]], Dict[str, Any]]
ResponseHook = Callable[[Any], Any]
CompositeExecutor = Callable[[Dict[str, Any], Any], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    """
    Descriptor of one remote operation.

    Each tool defines:
    - Name and description
    - HTTP method, or COMPOSITE with a custom executor
    - Endpoint template with {param} placeholders
    - Parameter schema
    - Optional pre-validation and post-response hooks
    """
    name: str
    description: str
    method: HttpMethod
    schema: ToolSchema = field(default_factory=ToolSchema)
    endpoint: Optional[str] = None
    transform_params: Optional[ParamsHook] = None
    transform_response: Optional[ResponseHook] = None
    custom_executor: Optional[CompositeExecutor] = None
    category: str = "general"

    def __post_init__(self):
        if self.method == HttpMethod.COMPOSITE:
            if self.custom_executor is None:
                raise ValueError(f"Composite tool {self.name} needs a custom executor")
        elif not self.endpoint:
            raise ValueError(f"Endpoint is required for {self.method.value} tool {self.name}")

    @property
    def path_params(self) -> List[str]:
        """Placeholder names in the endpoint template, in order."""
        return PLACEHOLDER_PATTERN.findall(self.endpoint or "")

    def __repr__(self) -> str:
        return f"Tool(name={self.name}, method={self.method.value})"


class ToolRegistry:
    """
    Registry for all available tools.

    Names are unique: registering an existing name is an error, not an
    overwrite. The registry is filled at startup and only read afterwards.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        self._logger = logging.getLogger("meraki.tools.registry")
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)

        self._tools[tool.name] = tool
        self._logger.debug(f"Registered tool: {tool.name} ({tool.method.value})")

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        """Get a tool by name or raise UnknownToolError."""
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def list_tools(self) -> List[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def list_by_category(self, category: str) -> List[Tool]:
        """List tools by category."""
        return [t for t in self._tools.values() if t.category == category]

    def tool_definitions(self, policy=None) -> List[Dict[str, Any]]:
        """
        Tool definitions for the caller.

        With a policy, tools that are not auto-approved carry
        `requiresApproval: true`.
        """
        definitions = []
        for tool in self._tools.values():
            definition = {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.schema.to_json_schema(),
            }
            if policy is not None and not policy.should_auto_approve(tool.name):
                definition["requiresApproval"] = True
            definitions.append(definition)
        return definitions

    def load_from_yaml(self, path: str) -> int:
        """
        Load plain HTTP tool definitions from a YAML file.
        Returns number of tools loaded.
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        count = 0
        for tool_data in data.get('tools', []):
            self.register(parse_tool_definition(tool_data))
            count += 1

        self._logger.info(f"Loaded {count} tools from {path}")
        return count

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


def parse_tool_definition(data: Dict[str, Any]) -> Tool:
    """Parse a tool definition from a dict (YAML/JSON form)."""
    params = []
    for param_data in data.get('parameters', []):
        enum = param_data.get('enum')
        item_type = param_data.get('items')
        params.append(ToolParameter(
            name=param_data['name'],
            type=ParameterType(param_data.get('type', 'string')),
            description=param_data.get('description', ''),
            required=param_data.get('required', False),
            enum=tuple(enum) if enum else None,
            min_value=param_data.get('min'),
            max_value=param_data.get('max'),
            pattern=param_data.get('pattern'),
            min_length=param_data.get('min_length'),
            max_length=param_data.get('max_length'),
            item_type=ParameterType(item_type) if item_type else None,
        ))

    method = HttpMethod(str(data.get('method', 'GET')).upper())
    if method == HttpMethod.COMPOSITE:
        raise ValueError(f"Composite tool {data['name']} cannot be loaded from a file")

    return Tool(
        name=data['name'],
        description=data.get('description', ''),
        method=method,
        endpoint=data['endpoint'],
        schema=ToolSchema(parameters=tuple(params)),
        category=data.get('category', 'general'),
    )
