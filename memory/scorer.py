"""Relevance scoring of remembered characters and world entities for one chapter.

score = importance + recency + keyword, capped at `max_relevance_score`.
Scores depend on the chapter being planned and are recomputed every call.
"""

import math
from dataclasses import dataclass
from typing import Optional

from config.settings import Settings
from memory.keywords import ChapterKeywords
from models.character import CharacterProfile, is_placeholder
from models.enums import RoleTag
from models.world import WorldEntity


@dataclass(frozen=True)
class ScoreBreakdown:
    importance: float
    recency: float
    keyword: float
    total: float


class RelevanceScorer:
    """Computes per-chapter relevance from settings-provided weights."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def role_base(self, role_tag: RoleTag) -> float:
        s = self.settings
        return {
            RoleTag.PROTAGONIST: s.role_weight_protagonist,
            RoleTag.ANTAGONIST: s.role_weight_antagonist,
            RoleTag.MAJOR: s.role_weight_major,
            RoleTag.SUPPORT: s.role_weight_support,
        }.get(role_tag, 0.0)

    def recency(self, current_chapter: int, last_seen: Optional[int], decay_rate: float) -> float:
        """Exponential decay with chapter distance; nothing recorded scores zero."""
        if last_seen is None:
            return 0.0
        gap = max(0, current_chapter - last_seen)
        return math.exp(-decay_rate * gap) * self.settings.recency_weight

    def _cap(self, importance: float, recency: float, keyword: float) -> ScoreBreakdown:
        total = min(self.settings.max_relevance_score, importance + recency + keyword)
        return ScoreBreakdown(importance, recency, keyword, total)

    def score_character(
        self, profile: CharacterProfile, current_chapter: int, keywords: ChapterKeywords
    ) -> ScoreBreakdown:
        s = self.settings
        importance = self.role_base(profile.role_tag) + (profile.influence_score or 0.0) * s.character_influence_weight
        recency = self.recency(current_chapter, profile.last_appearance, s.character_decay_rate)

        keyword = 0.0
        if keywords.mentions(profile.name):
            keyword += s.character_name_hit_score
        if not is_placeholder(profile.hook_line) and keywords.overlaps(profile.hook_line, s.min_overlap_length):
            keyword += s.character_hook_hit_score
        if not is_placeholder(profile.links_to_protagonist) and keywords.overlaps(
            profile.links_to_protagonist, s.min_overlap_length
        ):
            keyword += s.character_link_hit_score
        return self._cap(importance, recency, keyword)

    def score_entity(self, entity: WorldEntity, current_chapter: int, keywords: ChapterKeywords) -> ScoreBreakdown:
        s = self.settings
        importance = (entity.influence_score or 0.0) * s.entity_influence_weight
        recency = self.recency(current_chapter, entity.last_mention, s.entity_decay_rate)

        keyword = 0.0
        if keywords.mentions(entity.name):
            keyword += s.entity_name_hit_score
        hook_hits = keywords.hook_word_hits(entity.hook_line)
        keyword += min(hook_hits * s.entity_hook_word_score, s.entity_hook_max_score)
        return self._cap(importance, recency, keyword)
