"""Tests for Settings validation."""

import pytest
from pydantic import ValidationError


def _make(tmp_path, **overrides):
    from config.settings import Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "memory.db",
        chroma_persist_dir=tmp_path / "chroma",
        log_dir=tmp_path / "logs",
        **overrides,
    )


class TestSettingsDefaults:
    def test_default_gate_thresholds(self, tmp_path):
        s = _make(tmp_path)
        assert s.cameo_min_influence == 20
        assert s.cameo_min_screen_time == 0.1
        assert s.cameo_min_return_probability == 0.3
        assert s.world_entity_min_influence == 20

    def test_default_quotas(self, tmp_path):
        s = _make(tmp_path)
        assert (s.max_major_characters, s.max_support_characters, s.max_characters_per_chapter) == (5, 2, 8)
        assert (s.max_organizations, s.max_locations, s.max_artifacts) == (3, 2, 2)

    def test_default_model_names(self, tmp_path):
        s = _make(tmp_path)
        assert s.llm_model_extraction == "claude-haiku-4-5"
        assert s.llm_model_writing == "claude-opus-4-6"

    def test_get_settings_is_cached(self):
        from config.settings import get_settings
        assert get_settings() is get_settings()


class TestSettingsValidation:
    def test_probability_above_one_raises(self, tmp_path):
        with pytest.raises(ValidationError, match="probability"):
            _make(tmp_path, cameo_min_screen_time=1.5)

    def test_zero_decay_rate_raises(self, tmp_path):
        with pytest.raises(ValidationError, match="decay"):
            _make(tmp_path, character_decay_rate=0)

    def test_negative_quota_raises(self, tmp_path):
        with pytest.raises(ValidationError, match="non-negative"):
            _make(tmp_path, max_locations=-1)

    def test_zero_character_cap_raises(self, tmp_path):
        with pytest.raises(ValidationError, match="max_characters_per_chapter"):
            _make(tmp_path, max_characters_per_chapter=0)

    def test_quotas_admitting_nobody_raise(self, tmp_path):
        with pytest.raises(ValidationError, match="non-core"):
            _make(tmp_path, max_major_characters=0, max_support_characters=0)

    def test_non_positive_timeout_raises(self, tmp_path):
        with pytest.raises(ValidationError, match="timeout"):
            _make(tmp_path, extraction_timeout_seconds=0)

    def test_overrides_accepted(self, tmp_path):
        s = _make(tmp_path, max_major_characters=3, recency_weight=10.0)
        assert s.max_major_characters == 3
        assert s.recency_weight == 10.0

    def test_path_parent_dirs_created(self, tmp_path):
        from config.settings import Settings
        deep_path = tmp_path / "a" / "b" / "c" / "memory.db"
        Settings(
            _env_file=None,
            sqlite_db_path=deep_path,
            chroma_persist_dir=tmp_path / "chroma",
            log_dir=tmp_path / "logs",
        )
        assert deep_path.parent.exists()
