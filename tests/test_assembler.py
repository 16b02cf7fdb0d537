"""Tests for context package assembly."""

import logging

import pytest

from memory.assembler import ContextAssembler, ContextRequest, NovelInfo, VolumeInfo
from memory.keywords import ChapterKeywords, ChapterPlan
from memory.selector import Selection, Selector
from models.bank import MemoryBank
from models.enums import SegmentKind
from models.plot import ChapterSummary


def _request(chapter=11, **overrides):
    fields = dict(
        novel=NovelInfo(title="剑起青石", genre="玄幻", tags="热血", outline="少年林凡重返宗门的故事"),
        plan=ChapterPlan(chapter_number=chapter, title="重返天剑门", goal="林凡挑战赵天"),
        previous_chapter_text="林凡收拾行囊，告别苏晴。",
    )
    fields.update(overrides)
    return ContextRequest(**fields)


@pytest.fixture
def assembler(settings):
    return ContextAssembler(settings, default_system_identity="你是一位网络小说作家。")


def _assemble(assembler, settings, bank, request, **kwargs):
    keywords = ChapterKeywords.from_texts(request.chapter, request.plan.texts())
    selection = Selector(settings).select(
        bank.characters.values(), bank.world_entities.values(), request.chapter, keywords,
    )
    return assembler.assemble(bank, request, selection, keywords, **kwargs)


class TestSegmentOrder:
    def test_full_bank_order(self, assembler, settings, sample_bank):
        request = _request(
            volume=VolumeInfo(title="第二卷 天剑风云", chapter_start=11, chapter_end=30),
            user_direction="多写打斗",
        )
        package = _assemble(assembler, settings, sample_bank, request)

        kinds = [s.kind for s in package.segments]
        assert kinds == list(SegmentKind)
        assert kinds[0] == SegmentKind.SYSTEM_IDENTITY
        assert kinds[-1] == SegmentKind.CHAPTER_TASK

    def test_empty_bank_skips_empty_segments(self, assembler, settings):
        package = _assemble(assembler, settings, MemoryBank(novel_id=2), _request(chapter=1, novel=NovelInfo(title="新书")))
        kinds = [s.kind for s in package.segments]
        assert kinds == [SegmentKind.SYSTEM_IDENTITY, SegmentKind.BASIC_INFO, SegmentKind.CHAPTER_TASK]
        assert all(s.text for s in package.segments)

    def test_caller_identity_overrides_default(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request(system_identity="你是武侠作家。"))
        assert package.segments[0].text == "你是武侠作家。"


class TestSegmentContent:
    def test_basic_info(self, assembler, settings, sample_bank):
        text = _assemble(assembler, settings, sample_bank, _request()).segment(SegmentKind.BASIC_INFO).text
        assert "《剑起青石》" in text
        assert "玄幻" in text

    def test_roster_lists_selected_characters_only(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request())
        roster = package.segment(SegmentKind.CHARACTER_ROSTER).text
        assert "合计3人" in roster
        assert "**林凡**" in roster
        assert "与主角：救过林凡一命" in roster
        assert "老周" not in roster
        assert "待补充" not in roster

    def test_protagonist_status(self, assembler, settings, sample_bank):
        text = _assemble(assembler, settings, sample_bank, _request()).segment(SegmentKind.PROTAGONIST_STATUS).text
        assert "主角现状（林凡）" in text
        assert "筑基初期" in text
        assert "第10章" in text

    def test_world_dictionary_includes_recent_terms(self, assembler, settings, sample_bank):
        text = _assemble(assembler, settings, sample_bank, _request()).segment(SegmentKind.WORLD_DICTIONARY).text
        assert "天剑门 - 东域第一剑宗，门规森严" in text
        assert "剑意: 剑修对剑道的领悟" in text

    def test_summaries_merge_chronicle_and_recall(self, assembler, settings, sample_bank):
        recalled = [ChapterSummary(2, "林凡被逐出天剑门"), ChapterSummary(10, "重复")]
        package = _assemble(assembler, settings, sample_bank, _request(), recalled=recalled)
        text = package.segment(SegmentKind.CHAPTER_SUMMARIES).text
        assert "第2章: 林凡被逐出天剑门" in text
        assert "第9章: 林凡与赵天决战（三天后）" in text
        assert "重复" not in text
        assert text.index("相关旧章回顾") < text.index("前期内容概括")

    def test_summary_window_limits_recent(self, settings, sample_bank):
        assembler = ContextAssembler(settings.model_copy(update={"summary_window": 1}))
        text = _assemble(assembler, settings, sample_bank, _request()).segment(SegmentKind.CHAPTER_SUMMARIES).text
        assert "第10章" in text
        assert "第8章" not in text

    def test_previous_chapter_omitted_for_first_chapter(self, assembler, settings, empty_bank):
        package = _assemble(assembler, settings, empty_bank, _request(chapter=1))
        assert package.segment(SegmentKind.PREVIOUS_CHAPTER) is None

    def test_previous_chapter_included(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request(previous_chapter_title="告别"))
        text = package.segment(SegmentKind.PREVIOUS_CHAPTER).text
        assert "标题：告别" in text
        assert "告别苏晴" in text

    def test_foreshadowing_open_and_recently_resolved(self, assembler, settings, sample_bank):
        text = _assemble(assembler, settings, sample_bank, _request()).segment(SegmentKind.FORESHADOWING).text
        assert "玉佩中的残魂（第1章埋下，ACTIVE）" in text
        assert "勿重复回收" in text
        assert "赵天的身世（第9章回收）" in text

    def test_resolved_outside_window_not_listed(self, assembler, settings, sample_bank):
        text = _assemble(assembler, settings, sample_bank, _request(chapter=20)).segment(SegmentKind.FORESHADOWING).text
        assert "赵天的身世" not in text

    def test_chapter_task_last_and_authoritative(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request(estimated_words=3000))
        task = package.segments[-1].text
        assert task.startswith("**第11章写作任务**")
        assert "林凡挑战赵天" in task
        assert "约3000字" in task
        assert "优先于前文" in task


class TestMetadata:
    def test_sizes_and_tokens(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request())
        meta = package.metadata
        assert meta.segment_count == len(package.segments)
        assert meta.total_chars == sum(s.chars for s in package.segments)
        assert meta.estimated_tokens == round(meta.total_chars * 1.5)
        assert meta.oversized_segments == []

    def test_oversized_segment_logged_not_truncated(self, settings, sample_bank, caplog):
        assembler = ContextAssembler(settings.model_copy(update={"segment_soft_limit_chars": 10}))
        long_text = "林" * 500
        with caplog.at_level(logging.WARNING, logger="memory.assembler"):
            package = _assemble(assembler, settings, sample_bank, _request(previous_chapter_text=long_text))
        assert "previous_chapter" in package.metadata.oversized_segments
        assert long_text in package.segment(SegmentKind.PREVIOUS_CHAPTER).text
        assert "soft limit" in caplog.text

    def test_warnings_carried(self, assembler, settings, sample_bank):
        from memory.conflicts import ConflictWarning
        from models.enums import ConflictKind
        warning = ConflictWarning(ConflictKind.DUPLICATE_CLASSIFICATION, "苏晴", "dup")
        package = _assemble(assembler, settings, sample_bank, _request(), warnings=[warning])
        assert package.metadata.warnings == [warning]

    def test_messages_and_prompt(self, assembler, settings, sample_bank):
        package = _assemble(assembler, settings, sample_bank, _request())
        messages = package.messages()
        assert all(m["role"] == "system" for m in messages)
        assert package.pairs()[0] == ("system", "你是一位网络小说作家。")
        assert package.as_prompt().startswith("你是一位网络小说作家。\n\n**作品基本信息**")

    def test_empty_selection(self, assembler, sample_bank):
        keywords = ChapterKeywords.from_texts(11, [])
        package = assembler.assemble(sample_bank, _request(), Selection(chapter=11), keywords)
        assert package.segment(SegmentKind.CHARACTER_ROSTER) is None
