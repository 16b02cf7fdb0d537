"""Configuration package: settings, logging and exceptions."""

from config.exceptions import (
    NovelMemoryError,
    LLMError,
    LLMResponseParseError,
    DatabaseError,
    StoreUnavailableError,
    ExtractionError,
    MergeConflictError,
    ValidationError,
)
from config.logging_config import setup_logging
from config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "NovelMemoryError",
    "LLMError",
    "LLMResponseParseError",
    "DatabaseError",
    "StoreUnavailableError",
    "ExtractionError",
    "MergeConflictError",
    "ValidationError",
]
