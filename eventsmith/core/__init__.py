"""Core modules for Eventsmith."""

from .config import config, env, get_config, EventsmithConfig, PROJECT_ROOT
from .errors import (
    CalendarStoreError,
    CompletionError,
    ConfigurationError,
    ErrorKind,
    EventsmithError,
    ExtractionParseError,
    classify_store_error,
    get_error_message,
)
from .logger import setup_logging, get_logger

__all__ = [
    "config",
    "env",
    "get_config",
    "EventsmithConfig",
    "PROJECT_ROOT",
    "CalendarStoreError",
    "CompletionError",
    "ConfigurationError",
    "ErrorKind",
    "EventsmithError",
    "ExtractionParseError",
    "classify_store_error",
    "get_error_message",
    "setup_logging",
    "get_logger",
]
