"""World entities (factions, places, items) and glossary terms."""

from dataclasses import dataclass, field
from typing import Optional

from models.enums import EntityType


@dataclass
class WorldEntity:
    """An organization, location or artifact significant enough to track."""
    name: str
    type: EntityType
    hook_line: str = ""
    influence_score: float = 0.0
    related_characters: list[str] = field(default_factory=list)  # ordered, unique
    first_mention: Optional[int] = None
    last_mention: Optional[int] = None
    mention_count: int = 0

    def add_related(self, names: list[str]) -> None:
        for name in names:
            if name and name not in self.related_characters:
                self.related_characters.append(name)


@dataclass
class WorldTerm:
    """A world-setting glossary entry (cultivation realms, rules, jargon)."""
    term: str
    description: str = ""
    category: str = ""
    first_chapter: Optional[int] = None
    last_chapter: Optional[int] = None
