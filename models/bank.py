"""Per-manuscript memory bank: the full remembered state of one novel."""

import copy
from dataclasses import dataclass, field
from typing import Optional

from models.character import CameoRecord, CharacterProfile
from models.enums import RoleTag
from models.plot import ChapterSummary, ChronicleEvent, ForeshadowingRecord, ProtagonistStatus
from models.world import WorldEntity, WorldTerm


@dataclass
class MemoryBank:
    """Everything remembered about one manuscript.

    Characters, cameos, world entities and glossary terms are keyed by
    normalized name; chronicle and summaries by chapter number. `version`
    increases by one per committed merge and `merged_chapters` is the
    idempotency ledger of chapters already merged.
    """
    novel_id: int
    version: int = 0
    last_updated_chapter: Optional[int] = None
    characters: dict[str, CharacterProfile] = field(default_factory=dict)
    cameos: dict[str, CameoRecord] = field(default_factory=dict)
    world_entities: dict[str, WorldEntity] = field(default_factory=dict)
    world_terms: dict[str, WorldTerm] = field(default_factory=dict)
    foreshadowing: list[ForeshadowingRecord] = field(default_factory=list)
    chronicle: dict[int, ChronicleEvent] = field(default_factory=dict)
    summaries: dict[int, ChapterSummary] = field(default_factory=dict)
    protagonist_status: ProtagonistStatus = field(default_factory=ProtagonistStatus)
    merged_chapters: set[int] = field(default_factory=set)

    def snapshot(self) -> "MemoryBank":
        """Deep copy used as the working state of a transaction."""
        return copy.deepcopy(self)

    def protagonist(self) -> Optional[CharacterProfile]:
        for profile in self.characters.values():
            if profile.role_tag == RoleTag.PROTAGONIST:
                return profile
        return None

    def find_foreshadowing(self, content: str, type_: str) -> Optional[ForeshadowingRecord]:
        for record in self.foreshadowing:
            if record.key == (content, type_):
                return record
        return None

    def recent_summaries(self, before_chapter: int, window: int) -> list[ChapterSummary]:
        """Summaries of the `window` chapters preceding `before_chapter`, oldest first."""
        chapters = sorted(c for c in self.summaries if c < before_chapter)
        return [self.summaries[c] for c in chapters[-window:]] if window > 0 else []

    def known_names(self) -> list[str]:
        return list(self.characters) + list(self.cameos) + list(self.world_entities)

    def stats(self) -> dict[str, int]:
        return {
            "characters": len(self.characters),
            "cameos": len(self.cameos),
            "world_entities": len(self.world_entities),
            "world_terms": len(self.world_terms),
            "foreshadowing": len(self.foreshadowing),
            "chronicle": len(self.chronicle),
            "summaries": len(self.summaries),
        }
