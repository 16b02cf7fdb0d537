"""Tests for the custom exception hierarchy."""

import pytest
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


class TestExceptionHierarchy:
    def test_all_inherit_from_novel_memory_error(self):
        leaf_classes = [
            LLMError, LLMResponseParseError,
            DatabaseError, StoreUnavailableError,
            ExtractionError, MergeConflictError,
            ValidationError,
        ]
        for cls in leaf_classes:
            assert issubclass(cls, NovelMemoryError), f"{cls.__name__} must inherit NovelMemoryError"

    def test_llm_subclasses(self):
        assert issubclass(LLMResponseParseError, LLMError)

    def test_store_unavailable_is_database_error(self):
        assert issubclass(StoreUnavailableError, DatabaseError)


class TestExceptionCreation:
    def test_basic_message(self):
        err = LLMError("API failed")
        assert err.message == "API failed"
        assert err.details == {}

    def test_parse_error_has_raw_response(self):
        err = LLMResponseParseError("Parse failed", raw_response='{"bad": json}')
        assert err.raw_response == '{"bad": json}'

    def test_store_unavailable_carries_novel_id(self):
        err = StoreUnavailableError(7, "disk gone")
        assert err.novel_id == 7
        assert "novel_id=7" in str(err)

    def test_store_unavailable_default_message(self):
        assert "novel 3" in StoreUnavailableError(3).message

    def test_merge_conflict_fields(self):
        err = MergeConflictError("玉佩中的残魂", "status", "RESOLVED -> ACTIVE")
        assert err.subject == "玉佩中的残魂"
        assert err.field == "status"
        assert "RESOLVED -> ACTIVE" in str(err)

    def test_extraction_error_chapter(self):
        err = ExtractionError(12)
        assert err.chapter == 12
        assert "12" in err.message

    def test_catchable_as_base(self):
        with pytest.raises(NovelMemoryError):
            raise StoreUnavailableError(1)
