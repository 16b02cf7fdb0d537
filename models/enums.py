"""Enumerations for the narrative memory model."""

from enum import Enum


class RoleTag(str, Enum):
    PROTAGONIST = "PROTAGONIST"
    ANTAGONIST = "ANTAGONIST"
    MAJOR = "MAJOR"
    SUPPORT = "SUPPORT"
    CAMEO = "CAMEO"

    @classmethod
    def parse(cls, value, default: "RoleTag | None" = None) -> "RoleTag | None":
        """Lenient conversion of a model-supplied tag ("major", " MAJOR ")."""
        if isinstance(value, cls):
            return value
        if value is None:
            return default
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return default

    @property
    def is_core(self) -> bool:
        return self in (RoleTag.PROTAGONIST, RoleTag.ANTAGONIST)


class Lifecycle(str, Enum):
    CORE = "CORE"
    ARC_SUPPORT = "ARC_SUPPORT"
    TEMP_SUPPORT = "TEMP_SUPPORT"
    CAMEO = "CAMEO"


class EntityType(str, Enum):
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    ARTIFACT = "ARTIFACT"

    @classmethod
    def parse(cls, value) -> "EntityType | None":
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class ForeshadowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEVELOPING = "DEVELOPING"
    RESOLVED = "RESOLVED"

    @classmethod
    def parse(cls, value) -> "ForeshadowStatus | None":
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None

    @property
    def rank(self) -> int:
        return _FORESHADOW_ORDER.index(self)


_FORESHADOW_ORDER = [ForeshadowStatus.ACTIVE, ForeshadowStatus.DEVELOPING, ForeshadowStatus.RESOLVED]


class SegmentKind(str, Enum):
    """Context segments in the order they are handed to the generation call.

    Declaration order is the rendering order; later segments take precedence
    over earlier ones when their instructions conflict.
    """
    SYSTEM_IDENTITY = "system_identity"
    BASIC_INFO = "basic_info"
    OUTLINE = "outline"
    CURRENT_VOLUME = "current_volume"
    CHARACTER_ROSTER = "character_roster"
    PROTAGONIST_STATUS = "protagonist_status"
    WORLD_DICTIONARY = "world_dictionary"
    CHAPTER_SUMMARIES = "chapter_summaries"
    PREVIOUS_CHAPTER = "previous_chapter"
    FORESHADOWING = "foreshadowing"
    USER_DIRECTION = "user_direction"
    CHAPTER_TASK = "chapter_task"


class ConflictKind(str, Enum):
    TERMINATED_REAPPEARS = "terminated_reappears"
    FORESHADOW_TIMELINE = "foreshadow_timeline"
    DUPLICATE_CLASSIFICATION = "duplicate_classification"
    STALE_FORESHADOWING = "stale_foreshadowing"


# Status labels after which a character should not appear again
TERMINAL_STATUSES = frozenset({"DEAD", "DECEASED", "死亡", "已死亡"})

DEFAULT_STATUS = "ACTIVE"
