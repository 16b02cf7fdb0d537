"""Custom exception hierarchy for the narrative memory engine."""

from typing import Optional


class NovelMemoryError(Exception):
    """Base exception for all narrative memory errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# ---- LLM Errors ----

class LLMError(NovelMemoryError):
    """Base exception for generation-call errors."""


class LLMResponseParseError(LLMError):
    """Failed to parse a structured generation response."""

    def __init__(self, message: str = "Failed to parse LLM response", raw_response: str = ""):
        details = {"raw_response": raw_response[:200]} if raw_response else {}
        super().__init__(message, details)
        self.raw_response = raw_response


# ---- Store Errors ----

class DatabaseError(NovelMemoryError):
    """Database operation failed."""


class StoreUnavailableError(DatabaseError):
    """The durable store could not be read or written for a manuscript."""

    def __init__(self, novel_id: int, message: str = ""):
        msg = message or f"Memory store unavailable for novel {novel_id}"
        super().__init__(msg, {"novel_id": novel_id})
        self.novel_id = novel_id


# ---- Memory Errors ----

class ExtractionError(NovelMemoryError):
    """Chapter extraction could not produce an update batch."""

    def __init__(self, chapter: int, message: str = ""):
        super().__init__(message or f"Extraction failed for chapter {chapter}", {"chapter": chapter})
        self.chapter = chapter


class MergeConflictError(NovelMemoryError):
    """A single field update contradicts the stored record."""

    def __init__(self, subject: str, field: str, reason: str):
        super().__init__(
            f"Rejected update of {field} on {subject}: {reason}",
            {"subject": subject, "field": field},
        )
        self.subject = subject
        self.field = field
        self.reason = reason


# ---- Validation Errors ----

class ValidationError(NovelMemoryError):
    """Input validation failed."""

