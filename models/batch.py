"""Typed update batch produced by extraction and consumed by the merger.

The extraction model answers in loosely-shaped JSON with camelCase keys.
Everything here is validated at that boundary: unknown keys are ignored,
missing keys take defaults, unparsable numbers become None and a malformed
list item is dropped on its own without discarding its siblings.
"""

import logging
import math
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models.enums import EntityType, ForeshadowStatus, RoleTag

logger = logging.getLogger(__name__)


def _to_float(value: Any, low: float, high: float) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return min(max(number, low), high)


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()) if isinstance(value, str) else value)
    except (TypeError, ValueError, OverflowError):
        return None


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return "、".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _to_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.replace("，", ",").replace("、", ",").split(",")
        return [p.strip() for p in parts if p.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


def _keep_valid(model: type[BaseModel], items: Any, label: str) -> list:
    """Validate list items one by one, dropping the ones that fail."""
    if not isinstance(items, list):
        if items not in (None, "", {}):
            logger.debug("Ignoring non-list %s payload: %r", label, type(items).__name__)
        return []
    kept = []
    for item in items:
        if isinstance(item, model):
            kept.append(item)
            continue
        try:
            kept.append(model.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropping malformed %s item: %s", label, e.errors()[0].get("msg", e))
    return kept


class _Update(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)


class CharacterUpdate(_Update):
    name: str
    role_tag: Optional[RoleTag] = None
    status: Optional[str] = None
    influence_score: Optional[float] = None
    screen_time: Optional[float] = None
    return_probability: Optional[float] = None
    core_trait: Optional[str] = None
    speech_style: Optional[str] = None
    desire: Optional[str] = None
    hook_line: Optional[str] = None
    links_to_protagonist: Optional[str] = None
    trigger_conditions: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def require_name(cls, v: Any) -> str:
        text = _to_text(v)
        if not text:
            raise ValueError("character update without a name")
        return text

    @field_validator("role_tag", mode="before")
    @classmethod
    def parse_role(cls, v: Any) -> Optional[RoleTag]:
        return RoleTag.parse(v)

    @field_validator("influence_score", mode="before")
    @classmethod
    def parse_influence(cls, v: Any) -> Optional[float]:
        return _to_float(v, 0.0, 100.0)

    @field_validator("screen_time", "return_probability", mode="before")
    @classmethod
    def parse_ratio(cls, v: Any) -> Optional[float]:
        return _to_float(v, 0.0, 1.0)

    @field_validator(
        "status", "core_trait", "speech_style", "desire",
        "hook_line", "links_to_protagonist", "trigger_conditions",
        mode="before",
    )
    @classmethod
    def parse_text(cls, v: Any) -> Optional[str]:
        return _to_text(v) or None


class EventUpdate(_Update):
    description: str = ""
    event_type: str = ""
    events: list[str] = Field(default_factory=list)
    timeline_info: str = ""
    chapter: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def accept_plain_text(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"description": data}
        return data

    @field_validator("description", "event_type", "timeline_info", mode="before")
    @classmethod
    def parse_text(cls, v: Any) -> str:
        return _to_text(v) or ""

    @field_validator("events", mode="before")
    @classmethod
    def parse_events(cls, v: Any) -> list[str]:
        return _to_str_list(v)

    @field_validator("chapter", mode="before")
    @classmethod
    def parse_chapter(cls, v: Any) -> Optional[int]:
        return _to_int(v)

    @model_validator(mode="after")
    def require_content(self) -> "EventUpdate":
        if not self.description and not self.events:
            raise ValueError("event update carries no description")
        return self

    def descriptions(self) -> list[str]:
        items = [self.description] if self.description else []
        return items + self.events


class ForeshadowingUpdate(_Update):
    content: str
    type: str = ""
    status: Optional[ForeshadowStatus] = None
    planted_chapter: Optional[int] = None
    resolved_chapter: Optional[int] = None
    priority: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def require_content(cls, v: Any) -> str:
        text = _to_text(v)
        if not text:
            raise ValueError("foreshadowing update without content")
        return text

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> str:
        return _to_text(v) or ""

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> Optional[ForeshadowStatus]:
        return ForeshadowStatus.parse(v)

    @field_validator("planted_chapter", "resolved_chapter", mode="before")
    @classmethod
    def parse_chapter(cls, v: Any) -> Optional[int]:
        return _to_int(v)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> Optional[str]:
        return _to_text(v) or None


class WorldEntityUpdate(_Update):
    name: str
    type: EntityType
    hook_line: str = ""
    influence_score: Optional[float] = None
    related_characters: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def require_name(cls, v: Any) -> str:
        text = _to_text(v)
        if not text:
            raise ValueError("world entity without a name")
        return text

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> EntityType:
        parsed = EntityType.parse(v)
        if parsed is None:
            raise ValueError(f"unknown entity type {v!r}")
        return parsed

    @field_validator("hook_line", mode="before")
    @classmethod
    def parse_hook(cls, v: Any) -> str:
        return _to_text(v) or ""

    @field_validator("influence_score", mode="before")
    @classmethod
    def parse_influence(cls, v: Any) -> Optional[float]:
        return _to_float(v, 0.0, 100.0)

    @field_validator("related_characters", mode="before")
    @classmethod
    def parse_related(cls, v: Any) -> list[str]:
        return _to_str_list(v)


class WorldTermUpdate(_Update):
    term: str = Field(validation_alias=AliasChoices("term", "name"))
    description: str = ""
    category: str = ""

    @field_validator("term", mode="before")
    @classmethod
    def require_term(cls, v: Any) -> str:
        text = _to_text(v)
        if not text:
            raise ValueError("worldview update without a term")
        return text

    @field_validator("description", "category", mode="before")
    @classmethod
    def parse_text(cls, v: Any) -> str:
        return _to_text(v) or ""


class ProtagonistStatusUpdate(_Update):
    realm: str = ""
    skills: list[str] = Field(default_factory=list)
    equipment: list[str] = Field(default_factory=list)
    location: str = ""
    current_goal: str = ""
    relationships: dict[str, str] = Field(default_factory=dict)

    @field_validator("realm", "location", "current_goal", mode="before")
    @classmethod
    def parse_text(cls, v: Any) -> str:
        return _to_text(v) or ""

    @field_validator("skills", "equipment", mode="before")
    @classmethod
    def parse_list(cls, v: Any) -> list[str]:
        return _to_str_list(v)

    @field_validator("relationships", mode="before")
    @classmethod
    def parse_relationships(cls, v: Any) -> dict[str, str]:
        if not isinstance(v, dict):
            return {}
        return {str(k).strip(): str(val).strip() for k, val in v.items() if str(k).strip() and val}

    def is_empty(self) -> bool:
        return not (
            self.realm or self.skills or self.equipment
            or self.location or self.current_goal or self.relationships
        )


class UpdateBatch(_Update):
    """Everything one chapter's extraction wants to change in memory."""

    character_updates: list[CharacterUpdate] = Field(default_factory=list)
    event_updates: list[EventUpdate] = Field(default_factory=list)
    foreshadowing_updates: list[ForeshadowingUpdate] = Field(default_factory=list)
    world_entity_updates: list[WorldEntityUpdate] = Field(
        default_factory=list,
        validation_alias=AliasChoices("world_entity_updates", "worldEntityUpdates", "worldEntities"),
    )
    worldview_updates: list[WorldTermUpdate] = Field(default_factory=list)
    protagonist_status: Optional[ProtagonistStatusUpdate] = None
    chapter_summary: str = ""

    @field_validator("character_updates", mode="before")
    @classmethod
    def keep_characters(cls, v: Any) -> list:
        return _keep_valid(CharacterUpdate, v, "character")

    @field_validator("event_updates", mode="before")
    @classmethod
    def keep_events(cls, v: Any) -> list:
        return _keep_valid(EventUpdate, v, "event")

    @field_validator("foreshadowing_updates", mode="before")
    @classmethod
    def keep_foreshadowing(cls, v: Any) -> list:
        return _keep_valid(ForeshadowingUpdate, v, "foreshadowing")

    @field_validator("world_entity_updates", mode="before")
    @classmethod
    def keep_entities(cls, v: Any) -> list:
        return _keep_valid(WorldEntityUpdate, v, "world entity")

    @field_validator("worldview_updates", mode="before")
    @classmethod
    def keep_terms(cls, v: Any) -> list:
        return _keep_valid(WorldTermUpdate, v, "worldview")

    @field_validator("protagonist_status", mode="before")
    @classmethod
    def parse_protagonist(cls, v: Any) -> Optional[ProtagonistStatusUpdate]:
        if not isinstance(v, dict):
            return None
        try:
            status = ProtagonistStatusUpdate.model_validate(v)
        except ValidationError:
            return None
        return None if status.is_empty() else status

    @field_validator("chapter_summary", mode="before")
    @classmethod
    def parse_summary(cls, v: Any) -> str:
        return _to_text(v) or ""

    @classmethod
    def from_payload(cls, payload: Any) -> "UpdateBatch":
        """Build a batch from parsed JSON; anything that is not an object yields an empty batch."""
        if not isinstance(payload, dict):
            return cls()
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            logger.warning("Update batch rejected at boundary: %s", e)
            return cls()

    def is_empty(self) -> bool:
        return not (
            self.character_updates or self.event_updates or self.foreshadowing_updates
            or self.world_entity_updates or self.worldview_updates
            or self.protagonist_status or self.chapter_summary
        )

    def counts(self) -> dict[str, int]:
        return {
            "characters": len(self.character_updates),
            "events": len(self.event_updates),
            "foreshadowing": len(self.foreshadowing_updates),
            "world_entities": len(self.world_entity_updates),
            "worldview": len(self.worldview_updates),
        }
