"""
Gateway Settings
----------------
Settings document loaded once at startup and read-only afterwards.

The document may be JSON or YAML (PyYAML reads both). User values are
deep-merged over the built-in defaults and validated into frozen models,
so nothing can mutate policy after the process starts.

Rules:
- Secrets never live here; the API key comes from the environment
- A missing or unreadable file falls back to defaults (logged)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import copy
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.errors import ConfigurationError


SETTINGS_PATH_ENV = "MERAKI_MCP_SETTINGS_PATH"

SETTINGS_FILE_NAMES = (
    "meraki-mcp-settings.json",
    ".meraki-mcp-settings.json",
    "meraki-mcp-settings.yaml",
)

_logger = logging.getLogger("meraki.infra.settings")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class AutoApproveTools(_Frozen):
    all: bool = False
    patterns: List[str] = Field(default_factory=list)
    specific: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class AutoApproveSettings(_Frozen):
    enabled: bool = False
    tools: AutoApproveTools = Field(default_factory=AutoApproveTools)
    read_only_by_default: bool = Field(True, alias="readOnlyByDefault")


class RateLimitSettings(_Frozen):
    requests_per_second: int = Field(5, alias="requestsPerSecond", ge=1)
    max_retries: int = Field(3, alias="maxRetries", ge=1)
    initial_backoff_seconds: float = Field(1.0, alias="initialBackoffSeconds", ge=0)
    timeout_seconds: float = Field(30.0, alias="timeoutSeconds", gt=0)


class LoggingSettings(_Frozen):
    level: str = "info"
    log_api_calls: bool = Field(True, alias="logApiCalls")


class ResponseLimits(_Frozen):
    max_array_length: int = Field(50, alias="maxArrayLength", ge=1)
    max_response_size: int = Field(30000, alias="maxResponseSize", ge=1)
    max_summary_items: int = Field(500, alias="maxSummaryItems", ge=1)
    summarize_arrays: bool = Field(True, alias="summarizeArrays")
    summary_item_count: int = Field(5, alias="summaryItemCount", ge=0)
    facet_sample_size: int = Field(5, alias="facetSampleSize", ge=1)
    truncate_long_strings: bool = Field(True, alias="truncateLongStrings")
    max_string_length: int = Field(1000, alias="maxStringLength", ge=20)
    remove_null_fields: bool = Field(True, alias="removeNullFields")


class Settings(_Frozen):
    auto_approve: AutoApproveSettings = Field(default_factory=AutoApproveSettings, alias="autoApprove")
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings, alias="rateLimit")
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    response_limits: ResponseLimits = Field(default_factory=ResponseLimits, alias="responseLimits")
    # Keyed by glob pattern or exact tool name; declaration order matters
    default_params: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="defaultParams")


DEFAULT_SETTINGS: Dict[str, Any] = {
    "autoApprove": {
        "enabled": False,
        "tools": {"all": False, "patterns": [], "specific": [], "exclude": []},
        "readOnlyByDefault": True,
    },
    "rateLimit": {
        "requestsPerSecond": 5,
        "maxRetries": 3,
        "initialBackoffSeconds": 1.0,
        "timeoutSeconds": 30.0,
    },
    "logging": {"level": "info", "logApiCalls": True},
    "responseLimits": {
        "maxArrayLength": 50,
        "maxResponseSize": 30000,
        "summarizeArrays": True,
        "truncateLongStrings": True,
        "maxStringLength": 1000,
    },
    "defaultParams": {
        "*_list": {"perPage": 25},
        "network_clients_list": {"perPage": 20, "timespan": 3600},
        "network_events_list": {"perPage": 20},
        "organization_devices_list": {"perPage": 50},
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `override` into a copy of `base`.

    Nested mappings merge key by key; anything else in `override` replaces
    the base value outright (lists included).
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def find_settings_file(cwd: Optional[Path] = None) -> Optional[Path]:
    """Find the settings file in order of precedence."""
    cwd = cwd or Path.cwd()
    candidates: List[Path] = []

    env_path = os.getenv(SETTINGS_PATH_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.extend(cwd / name for name in SETTINGS_FILE_NAMES)

    for path in candidates:
        if path.is_file():
            _logger.info(f"Loading settings from: {path}")
            return path

    _logger.info("No settings file found, using defaults")
    return None


def build_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Validate defaults merged with `overrides` into a Settings value."""
    data = deep_merge(DEFAULT_SETTINGS, overrides or {})
    try:
        return Settings.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(
            f"Invalid settings at {location}: {first['msg']}",
            details={"field": location},
        ) from e


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from `path`, or from the first discovered file.

    Unreadable or malformed files fall back to defaults. A file that parses
    but carries invalid values raises ConfigurationError.
    """
    settings_path = Path(path) if path else find_settings_file()

    if settings_path is None:
        return build_settings()

    if not settings_path.exists():
        _logger.warning(f"Settings file not found: {settings_path}")
        return build_settings()

    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            user_settings = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _logger.error(f"Error loading settings file: {e}")
        return build_settings()

    if not isinstance(user_settings, dict):
        _logger.error(f"Settings file must contain a mapping: {settings_path}")
        return build_settings()

    return build_settings(user_settings)
