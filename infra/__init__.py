# Infrastructure module - Logging and settings
# Settings are loaded once; logging is configured by the entry point

from .logging import (
    get_logger, configure_logging, CallContext,
    get_call_id, generate_call_id
)
from .settings import (
    Settings, DEFAULT_SETTINGS, build_settings, load_settings, find_settings_file
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "CallContext",
    "get_call_id",
    "generate_call_id",
    # Settings
    "Settings",
    "DEFAULT_SETTINGS",
    "build_settings",
    "load_settings",
    "find_settings_file",
]
