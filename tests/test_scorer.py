"""Tests for chapter keywords and relevance scoring."""

import math

import pytest

from memory.keywords import ChapterKeywords, ChapterPlan, build_chapter_keywords
from models.character import CharacterProfile
from models.enums import EntityType, RoleTag
from models.world import WorldEntity


class TestChapterPlan:
    def test_from_camel_case_dict(self):
        plan = ChapterPlan.from_dict(11, {
            "chapterTitle": "重返天剑门",
            "chapterGoal": "林凡挑战赵天",
            "keyEvents": ["比剑", "苏晴出手"],
        })
        assert plan.title == "重返天剑门"
        assert plan.goal == "林凡挑战赵天"
        assert plan.key_events == ["比剑", "苏晴出手"]

    def test_from_none(self):
        plan = ChapterPlan.from_dict(3, None)
        assert plan.chapter_number == 3
        assert plan.title == ""

    def test_single_event_string(self):
        assert ChapterPlan.from_dict(1, {"events": "下山"}).key_events == ["下山"]


class TestChapterKeywords:
    def test_overlap_exact_term(self):
        keywords = ChapterKeywords.from_texts(1, ["林凡回到青石镇，见到了老周"])
        assert keywords.overlaps("林凡回到青石镇")

    def test_overlap_containment_needs_min_length(self):
        keywords = ChapterKeywords.from_texts(1, ["天剑门大比开始"])
        assert keywords.overlaps("天剑门大比")
        assert not keywords.overlaps("大比", min_overlap=3)

    def test_no_overlap(self):
        keywords = ChapterKeywords.from_texts(1, ["药王谷疗伤"])
        assert not keywords.overlaps("林凡回到青石镇")

    def test_empty_keywords(self):
        keywords = ChapterKeywords.from_texts(1, ["", "  "])
        assert not keywords
        assert not keywords.overlaps("anything")
        assert not keywords.mentions("")

    def test_hook_word_hits(self):
        keywords = ChapterKeywords.from_texts(1, ["东域第一剑宗的大比"])
        assert keywords.hook_word_hits("东域第一剑宗，门规森严") == 1

    def test_build_from_bank(self, sample_bank, settings):
        plan = ChapterPlan(chapter_number=11, goal="林凡挑战赵天")
        keywords = build_chapter_keywords(plan, sample_bank, volume_outline="第二卷：天剑风云", settings=settings)

        assert keywords.mentions("林凡挑战赵天")
        assert keywords.mentions("药王谷")          # protagonist location
        assert keywords.mentions("东域第一剑宗")    # recent entity hook
        assert not keywords.mentions("边陲小镇")     # 青石镇 last seen chapter 6
        assert keywords.mentions("医术通神")         # recent MAJOR hook
        assert keywords.mentions("林凡在药王谷养伤")  # recent summary
        assert keywords.mentions("天剑风云")


class TestRelevanceScorer:
    @pytest.fixture
    def scorer(self, settings):
        from memory.scorer import RelevanceScorer
        return RelevanceScorer(settings)

    def test_recency_decays_with_distance(self, scorer):
        values = [scorer.recency(20, last, 0.15) for last in (20, 18, 15, 10, 1)]
        assert values[0] == pytest.approx(30.0)
        assert values == sorted(values, reverse=True)
        assert values[2] == pytest.approx(30.0 * math.exp(-0.75))

    def test_recency_without_record_is_zero(self, scorer):
        assert scorer.recency(10, None, 0.15) == 0.0

    def test_future_appearance_treated_as_current(self, scorer):
        assert scorer.recency(5, 8, 0.15) == pytest.approx(30.0)

    def test_character_importance(self, scorer):
        profile = CharacterProfile(name="苏晴", role_tag=RoleTag.MAJOR, influence_score=70)
        score = scorer.score_character(profile, 10, ChapterKeywords.from_texts(10, []))
        assert score.importance == pytest.approx(49.0)
        assert score.recency == 0.0
        assert score.keyword == 0.0

    def test_character_keyword_hits(self, scorer):
        profile = CharacterProfile(
            name="苏晴", role_tag=RoleTag.MAJOR,
            hook_line="药王谷传人", links_to_protagonist="救过林凡一命",
        )
        keywords = ChapterKeywords.from_texts(10, ["苏晴赶来", "药王谷传人", "救过林凡一命"])
        assert scorer.score_character(profile, 10, keywords).keyword == pytest.approx(15.0 + 3.0 + 2.0)

    def test_placeholders_never_score(self, scorer):
        profile = CharacterProfile(name="王五", role_tag=RoleTag.SUPPORT)
        keywords = ChapterKeywords.from_texts(10, ["王五（待描述）", "关系待明确"])
        assert scorer.score_character(profile, 10, keywords).keyword == pytest.approx(15.0)

    def test_score_capped(self, scorer):
        profile = CharacterProfile(
            name="林凡", role_tag=RoleTag.PROTAGONIST, influence_score=100, last_appearance=10,
        )
        score = scorer.score_character(profile, 10, ChapterKeywords.from_texts(10, ["林凡出关"]))
        assert score.importance + score.recency + score.keyword > 100
        assert score.total == 100.0

    def test_cameo_role_has_no_base(self, scorer):
        assert scorer.role_base(RoleTag.CAMEO) == 0.0

    def test_entity_hook_bonus_capped(self, scorer):
        entity = WorldEntity(name="天剑门", type=EntityType.ORGANIZATION, hook_line="东域，剑宗，门规，森严")
        keywords = ChapterKeywords.from_texts(10, ["东域剑宗门规森严"])
        score = scorer.score_entity(entity, 10, keywords)
        assert score.keyword == pytest.approx(5.0)

    def test_entity_name_hit_and_influence(self, scorer):
        entity = WorldEntity(name="天剑门", type=EntityType.ORGANIZATION, influence_score=90, last_mention=10)
        score = scorer.score_entity(entity, 10, ChapterKeywords.from_texts(10, ["天剑门大比"]))
        assert score.importance == pytest.approx(36.0)
        assert score.recency == pytest.approx(30.0)
        assert score.keyword == pytest.approx(20.0)
