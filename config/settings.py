"""Configuration settings loaded from .env file."""

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings, loaded from .env file.

    Every weight and threshold of the memory engine lives here so that the
    selection behavior can be tuned per deployment without code changes.
    """

    # LLM
    llm_model_writing: str = "claude-opus-4-6"         # chapter writing (caller side)
    llm_model_extraction: str = "claude-haiku-4-5"     # Extractor
    extraction_timeout_seconds: float = 120.0
    extraction_max_retries: int = 1

    # Storage
    sqlite_db_path: Path = Path("./data/memory.db")
    chroma_persist_dir: Path = Path("./data/chroma")

    # CAMEO gate (any one condition routes a character to the cameo table)
    cameo_min_influence: int = 20
    cameo_min_screen_time: float = 0.1
    cameo_min_return_probability: float = 0.3
    world_entity_min_influence: int = 20

    # Importance component
    role_weight_protagonist: float = 50.0
    role_weight_antagonist: float = 45.0
    role_weight_major: float = 35.0
    role_weight_support: float = 20.0
    character_influence_weight: float = 0.2
    entity_influence_weight: float = 0.4

    # Recency component
    character_decay_rate: float = 0.15
    entity_decay_rate: float = 0.2
    recency_weight: float = 30.0

    # Keyword component
    character_name_hit_score: float = 15.0
    character_hook_hit_score: float = 3.0
    character_link_hit_score: float = 2.0
    entity_name_hit_score: float = 20.0
    entity_hook_word_score: float = 2.0
    entity_hook_max_score: float = 5.0
    min_overlap_length: int = 3
    max_relevance_score: float = 100.0

    # Selector quotas
    max_major_characters: int = 5
    max_support_characters: int = 2
    max_characters_per_chapter: int = 8
    max_organizations: int = 3
    max_locations: int = 2
    max_artifacts: int = 2

    # Context windows
    keyword_recent_chapters: int = 3
    keyword_recent_summaries: int = 3
    summary_window: int = 20
    recall_top_k: int = 5
    resolved_foreshadowing_window: int = 5
    stale_foreshadowing_chapters: int = 50

    # Context package observability
    segment_soft_limit_chars: int = 10000
    tokens_per_char: float = 1.5

    # Logging
    log_dir: Path = Path("./data/logs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("cameo_min_screen_time", "cameo_min_return_probability")
    @classmethod
    def validate_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("probability thresholds must be within [0, 1]")
        return v

    @field_validator("character_decay_rate", "entity_decay_rate")
    @classmethod
    def validate_decay_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("decay rate must be > 0")
        return v

    @field_validator(
        "max_major_characters", "max_support_characters",
        "max_organizations", "max_locations", "max_artifacts",
        "extraction_max_retries",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("quota must be non-negative")
        return v

    @field_validator("max_characters_per_chapter")
    @classmethod
    def validate_character_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_characters_per_chapter must be >= 1")
        return v

    @field_validator("sqlite_db_path", "chroma_persist_dir", "log_dir")
    @classmethod
    def ensure_parent_dirs(cls, v: Path) -> Path:
        v.parent.mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def validate_quota_fits_cap(self) -> "Settings":
        if self.max_major_characters + self.max_support_characters < 1:
            raise ValueError(
                "max_major_characters + max_support_characters must admit at least one "
                "non-core character"
            )
        if self.extraction_timeout_seconds <= 0:
            raise ValueError("extraction_timeout_seconds must be > 0")
        return self


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
