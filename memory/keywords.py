"""Chapter keyword set: what the chapter being planned is about.

The keyword set is free text gathered from the chapter plan, the
protagonist's current situation, recently active entities and characters,
the latest chapter summaries and the current volume outline. Scoring and
trigger gating both match against it.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from config.settings import Settings
from models.bank import MemoryBank
from models.character import is_placeholder
from models.enums import RoleTag
from tools.text_utils import collapse_whitespace, split_terms


@dataclass
class ChapterPlan:
    """Plan for the chapter about to be written."""
    chapter_number: int
    title: str = ""
    goal: str = ""
    summary: str = ""
    key_events: list[str] = field(default_factory=list)
    location: str = ""
    scene: str = ""

    @classmethod
    def from_dict(cls, chapter_number: int, data: Optional[dict[str, Any]]) -> "ChapterPlan":
        """Accept plan dicts in either snake_case or the camelCase planners emit."""
        data = data or {}

        def pick(*keys) -> str:
            for key in keys:
                value = data.get(key)
                if value:
                    if isinstance(value, (list, tuple)):
                        return " ".join(str(v) for v in value)
                    return str(value).strip()
            return ""

        events = data.get("key_events") or data.get("keyEvents") or data.get("events") or []
        if isinstance(events, str):
            events = [events]
        return cls(
            chapter_number=chapter_number,
            title=pick("title", "chapterTitle", "chapter_title"),
            goal=pick("goal", "chapterGoal", "chapter_goal", "goals"),
            summary=pick("summary", "plotSummary", "plot_summary"),
            key_events=[str(e).strip() for e in events if str(e).strip()],
            location=pick("location"),
            scene=pick("scene"),
        )

    def texts(self) -> list[str]:
        return [self.title, self.goal, self.summary, *self.key_events, self.location, self.scene]


@dataclass
class ChapterKeywords:
    """Keyword text for one chapter plus its punctuation-delimited terms."""
    chapter_number: int
    text: str = ""
    terms: list[str] = field(default_factory=list)

    @classmethod
    def from_texts(cls, chapter_number: int, texts: list[str]) -> "ChapterKeywords":
        text = collapse_whitespace(" ".join(t for t in texts if t and t.strip()))
        return cls(chapter_number=chapter_number, text=text, terms=split_terms(text))

    def __bool__(self) -> bool:
        return bool(self.text)

    def mentions(self, fragment: str) -> bool:
        """Plain substring hit (names, negative-trigger targets)."""
        return bool(fragment) and fragment in self.text

    def overlaps(self, text: str, min_overlap: int = 3) -> bool:
        """True when some term of `text` matches some keyword term.

        A match is exact equality of two-plus-character terms, or containment
        either way when the shorter of the two has at least `min_overlap`
        characters.
        """
        if not text or not self.terms:
            return False
        for word in split_terms(text):
            for keyword in self.terms:
                if word == keyword:
                    return True
                if (word in keyword or keyword in word) and min(len(word), len(keyword)) >= min_overlap:
                    return True
        return False

    def hook_word_hits(self, hook_line: str) -> int:
        """Number of two-plus-character hook-line terms found in the keyword text."""
        if not hook_line or not self.text:
            return 0
        return sum(1 for word in split_terms(hook_line) if word in self.text)


def build_chapter_keywords(
    plan: ChapterPlan,
    bank: MemoryBank,
    volume_outline: str = "",
    settings: Optional[Settings] = None,
) -> ChapterKeywords:
    """Gather the keyword text for `plan` from the plan itself and remembered state.

    "Recent" is measured from the last merged chapter: entities and
    PROTAGONIST/ANTAGONIST/MAJOR characters seen within
    `keyword_recent_chapters` of it contribute their names and hook lines.
    """
    settings = settings or Settings()
    texts = plan.texts()

    status = bank.protagonist_status
    texts += [status.location, status.current_goal]

    reference = bank.last_updated_chapter
    window = settings.keyword_recent_chapters
    if reference is not None:
        for entity in bank.world_entities.values():
            if entity.last_mention is not None and reference - entity.last_mention <= window:
                texts += [entity.name, entity.hook_line]
        for profile in bank.characters.values():
            if profile.role_tag not in (RoleTag.PROTAGONIST, RoleTag.ANTAGONIST, RoleTag.MAJOR):
                continue
            if profile.last_appearance is not None and reference - profile.last_appearance <= window:
                texts.append(profile.name)
                if not is_placeholder(profile.hook_line):
                    texts.append(profile.hook_line)

    for summary in bank.recent_summaries(plan.chapter_number, settings.keyword_recent_summaries):
        texts.append(summary.summary)

    texts.append(volume_outline)
    return ChapterKeywords.from_texts(plan.chapter_number, texts)
