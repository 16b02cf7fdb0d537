"""Plot-level memory records: foreshadowing, chronicle, summaries, protagonist state."""

from dataclasses import dataclass, field
from typing import Optional

from models.enums import ForeshadowStatus


@dataclass
class ForeshadowingRecord:
    """A planted narrative hint and where it stands.

    Identity is the (content, type) pair. Status only moves forward and
    resolved_chapter, when set, is never before planted_chapter.
    """
    content: str
    type: str = ""
    status: ForeshadowStatus = ForeshadowStatus.ACTIVE
    planted_chapter: int = 0
    resolved_chapter: Optional[int] = None
    priority: str = ""
    last_touched_chapter: Optional[int] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.content, self.type)

    @property
    def is_open(self) -> bool:
        return self.status != ForeshadowStatus.RESOLVED


@dataclass
class ChronicleEvent:
    """Everything that happened in one chapter, in narrative order."""
    chapter: int
    events: list[str] = field(default_factory=list)
    timeline_info: str = ""

    def add_events(self, descriptions: list[str]) -> int:
        added = 0
        for text in descriptions:
            text = text.strip()
            if text and text not in self.events:
                self.events.append(text)
                added += 1
        return added


@dataclass
class ChapterSummary:
    chapter: int
    summary: str


@dataclass
class ProtagonistStatus:
    """Snapshot of the protagonist as of the last merged chapter."""
    realm: str = ""
    skills: list[str] = field(default_factory=list)
    equipment: list[str] = field(default_factory=list)
    location: str = ""
    current_goal: str = ""
    relationships: dict[str, str] = field(default_factory=dict)
    updated_chapter: Optional[int] = None

    def is_empty(self) -> bool:
        return not (
            self.realm or self.skills or self.equipment
            or self.location or self.current_goal or self.relationships
        )
