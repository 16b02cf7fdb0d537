"""Working-set selection for one chapter under trigger gates and quotas."""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from config.settings import Settings
from memory.keywords import ChapterKeywords
from memory.scorer import RelevanceScorer, ScoreBreakdown
from models.character import CharacterProfile, is_placeholder
from models.enums import EntityType, RoleTag
from models.world import WorldEntity

logger = logging.getLogger(__name__)

# Cues that make a trigger condition negative: the character should only
# appear once the story has moved away from the named target.
NEGATIVE_CUES_ZH = ("离开", "远离", "不在", "逃离", "告别")
NEGATIVE_CUES_EN = ("away from", "not in", "left", "leave")

_NEGATIVE_EN_RE = re.compile(r"\b(" + "|".join(NEGATIVE_CUES_EN) + r")\b", re.IGNORECASE)
_TARGET_STOP_ZH_RE = re.compile(r"[，。、 ；：！？,.;:!?\n\t].*", re.DOTALL)
_TARGET_STOP_EN_RE = re.compile(r"[，。、；：！？,.;:!?\n\t].*", re.DOTALL)
_LEADING_ARTICLE_RE = re.compile(r"^(the|a|an)\s+", re.IGNORECASE)
_MAX_TARGET_CHARS = 6


def negative_target(condition: str) -> Optional[str]:
    """Target of a negative trigger condition, or None when the condition is positive.

    For Chinese cues the target is the text after the cue up to the first
    punctuation mark, at most six characters ("离开天剑门后" -> "天剑门后").
    For English cues it is the first word after the cue, skipping an article.
    An empty string means the cue had no usable target.
    """
    for cue in NEGATIVE_CUES_ZH:
        idx = condition.find(cue)
        if idx != -1:
            after = condition[idx + len(cue):].strip()
            after = _TARGET_STOP_ZH_RE.sub("", after)
            return after[:_MAX_TARGET_CHARS]

    match = _NEGATIVE_EN_RE.search(condition)
    if match:
        after = condition[match.end():].strip()
        after = _TARGET_STOP_EN_RE.sub("", after)
        after = _LEADING_ARTICLE_RE.sub("", after).strip()
        return after.split(" ")[0] if after else ""
    return None


@dataclass
class ScoredCharacter:
    profile: CharacterProfile
    score: ScoreBreakdown


@dataclass
class ScoredEntity:
    entity: WorldEntity
    score: ScoreBreakdown


@dataclass
class Selection:
    """Characters and world entities chosen for one chapter, best first."""
    chapter: int
    characters: list[ScoredCharacter] = field(default_factory=list)
    organizations: list[ScoredEntity] = field(default_factory=list)
    locations: list[ScoredEntity] = field(default_factory=list)
    artifacts: list[ScoredEntity] = field(default_factory=list)
    gated_out: list[str] = field(default_factory=list)
    over_quota: list[str] = field(default_factory=list)

    @property
    def character_names(self) -> list[str]:
        return [c.profile.name for c in self.characters]

    @property
    def entities(self) -> list[ScoredEntity]:
        return self.organizations + self.locations + self.artifacts


def _rank_key(score: ScoreBreakdown, name: str):
    return (-score.total, name)


class Selector:
    """Applies forced inclusion, trigger gating and role quotas on top of scores."""

    def __init__(self, settings: Optional[Settings] = None, scorer: Optional[RelevanceScorer] = None):
        self.settings = settings or Settings()
        self.scorer = scorer or RelevanceScorer(self.settings)

    def trigger_satisfied(self, profile: CharacterProfile, keywords: ChapterKeywords) -> bool:
        """Whether a character's trigger condition is met by this chapter's keywords."""
        if profile.role_tag.is_core:
            return True
        condition = (profile.trigger_conditions or "").strip()
        if not condition or is_placeholder(condition):
            return True

        target = negative_target(condition)
        if target is not None:
            # Still at the place the character waits to be away from
            return not (target and keywords.mentions(target))
        return keywords.overlaps(condition, self.settings.min_overlap_length)

    def select(
        self,
        characters: Iterable[CharacterProfile],
        entities: Iterable[WorldEntity],
        chapter: int,
        keywords: ChapterKeywords,
    ) -> Selection:
        selection = Selection(chapter=chapter)
        self._select_characters(selection, characters, chapter, keywords)
        self._select_entities(selection, entities, chapter, keywords)
        logger.info(
            "Chapter %d selection: %d characters %s, %d entities, %d gated out, %d over quota",
            chapter, len(selection.characters), selection.character_names,
            len(selection.entities), len(selection.gated_out), len(selection.over_quota),
        )
        return selection

    def _select_characters(
        self,
        selection: Selection,
        characters: Iterable[CharacterProfile],
        chapter: int,
        keywords: ChapterKeywords,
    ):
        s = self.settings
        candidates: list[ScoredCharacter] = []
        for profile in characters:
            if profile.role_tag == RoleTag.CAMEO:
                continue
            if not self.trigger_satisfied(profile, keywords):
                selection.gated_out.append(profile.name)
                continue
            candidates.append(ScoredCharacter(profile, self.scorer.score_character(profile, chapter, keywords)))
        candidates.sort(key=lambda c: _rank_key(c.score, c.profile.name))

        core = [c for c in candidates if c.profile.role_tag.is_core]
        if len(core) > s.max_characters_per_chapter:
            logger.warning(
                "Chapter %d: %d core characters exceed the cap of %d; keeping the highest scoring",
                chapter, len(core), s.max_characters_per_chapter,
            )
            selection.over_quota += [c.profile.name for c in core[s.max_characters_per_chapter:]]
            core = core[:s.max_characters_per_chapter]

        chosen = list(core)
        majors = supports = 0
        for candidate in candidates:
            role = candidate.profile.role_tag
            if role.is_core:
                continue
            if len(chosen) >= s.max_characters_per_chapter:
                selection.over_quota.append(candidate.profile.name)
                continue
            if role == RoleTag.MAJOR and majors < s.max_major_characters:
                majors += 1
                chosen.append(candidate)
            elif role == RoleTag.SUPPORT and supports < s.max_support_characters:
                supports += 1
                chosen.append(candidate)
            else:
                selection.over_quota.append(candidate.profile.name)

        chosen.sort(key=lambda c: _rank_key(c.score, c.profile.name))
        selection.characters = chosen

    def _select_entities(
        self,
        selection: Selection,
        entities: Iterable[WorldEntity],
        chapter: int,
        keywords: ChapterKeywords,
    ):
        s = self.settings
        buckets: dict[EntityType, list[ScoredEntity]] = {t: [] for t in EntityType}
        for entity in entities:
            buckets[entity.type].append(ScoredEntity(entity, self.scorer.score_entity(entity, chapter, keywords)))
        for bucket in buckets.values():
            bucket.sort(key=lambda e: _rank_key(e.score, e.entity.name))

        selection.organizations = buckets[EntityType.ORGANIZATION][:s.max_organizations]
        selection.locations = buckets[EntityType.LOCATION][:s.max_locations]
        selection.artifacts = buckets[EntityType.ARTIFACT][:s.max_artifacts]
