"""Context package assembly for a chapter-writing generation call.

Segments are rendered in the fixed order of `SegmentKind`; later segments
take precedence over earlier ones when their instructions disagree. Each
segment is built independently and left out when empty. Sizes are measured
and logged but nothing is truncated here: the selector's quotas are what
keep the package bounded.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from config.settings import Settings
from memory.conflicts import ConflictWarning
from memory.keywords import ChapterKeywords, ChapterPlan
from memory.selector import ScoredEntity, Selection
from models.bank import MemoryBank
from models.character import PLACEHOLDER_LINKS, is_placeholder
from models.enums import ForeshadowStatus, SegmentKind
from models.plot import ChapterSummary
from tools.text_utils import estimate_tokens

logger = logging.getLogger(__name__)

ROLE_SYSTEM = "system"


@dataclass
class NovelInfo:
    """Manuscript-level facts the caller owns."""
    title: str
    genre: str = ""
    tags: str = ""
    outline: str = ""
    main_themes: list[str] = field(default_factory=list)


@dataclass
class VolumeInfo:
    title: str
    theme: str = ""
    description: str = ""
    content_outline: str = ""
    key_events: str = ""
    chapter_start: Optional[int] = None
    chapter_end: Optional[int] = None


@dataclass
class ContextRequest:
    """Everything the caller supplies for one chapter besides remembered state."""
    novel: NovelInfo
    plan: ChapterPlan
    volume: Optional[VolumeInfo] = None
    previous_chapter_title: str = ""
    previous_chapter_text: str = ""
    user_direction: str = ""
    system_identity: Optional[str] = None
    estimated_words: Optional[int] = None

    @property
    def chapter(self) -> int:
        return self.plan.chapter_number


@dataclass
class ContextSegment:
    kind: SegmentKind
    text: str
    role: str = ROLE_SYSTEM

    @property
    def chars(self) -> int:
        return len(self.text)


@dataclass
class ContextMetadata:
    segment_count: int
    total_chars: int
    segment_sizes: dict[str, int]
    estimated_tokens: int
    oversized_segments: list[str] = field(default_factory=list)
    warnings: list[ConflictWarning] = field(default_factory=list)


@dataclass
class ContextPackage:
    chapter: int
    segments: list[ContextSegment]
    metadata: ContextMetadata

    def messages(self) -> list[dict[str, str]]:
        return [{"role": s.role, "content": s.text} for s in self.segments]

    def pairs(self) -> list[tuple[str, str]]:
        return [(s.role, s.text) for s in self.segments]

    def segment(self, kind: SegmentKind) -> Optional[ContextSegment]:
        for s in self.segments:
            if s.kind == kind:
                return s
        return None

    def as_prompt(self) -> str:
        """Single-string rendering for generation calls that take one prompt."""
        return "\n\n".join(s.text for s in self.segments)


@dataclass
class _AssemblyInput:
    bank: MemoryBank
    request: ContextRequest
    selection: Selection
    keywords: ChapterKeywords
    recalled: list[ChapterSummary]


class ContextAssembler:
    """Renders remembered state and the caller's request into ordered segments."""

    def __init__(self, settings: Optional[Settings] = None, default_system_identity: str = ""):
        self.settings = settings or Settings()
        self.default_system_identity = default_system_identity
        self._builders: dict[SegmentKind, Callable[[_AssemblyInput], str]] = {
            SegmentKind.SYSTEM_IDENTITY: self._system_identity,
            SegmentKind.BASIC_INFO: self._basic_info,
            SegmentKind.OUTLINE: self._outline,
            SegmentKind.CURRENT_VOLUME: self._current_volume,
            SegmentKind.CHARACTER_ROSTER: self._character_roster,
            SegmentKind.PROTAGONIST_STATUS: self._protagonist_status,
            SegmentKind.WORLD_DICTIONARY: self._world_dictionary,
            SegmentKind.CHAPTER_SUMMARIES: self._chapter_summaries,
            SegmentKind.PREVIOUS_CHAPTER: self._previous_chapter,
            SegmentKind.FORESHADOWING: self._foreshadowing,
            SegmentKind.USER_DIRECTION: self._user_direction,
            SegmentKind.CHAPTER_TASK: self._chapter_task,
        }

    def assemble(
        self,
        bank: MemoryBank,
        request: ContextRequest,
        selection: Selection,
        keywords: ChapterKeywords,
        warnings: Optional[list[ConflictWarning]] = None,
        recalled: Optional[list[ChapterSummary]] = None,
    ) -> ContextPackage:
        data = _AssemblyInput(bank, request, selection, keywords, recalled or [])
        segments = []
        for kind in SegmentKind:
            text = self._builders[kind](data).strip()
            if text:
                segments.append(ContextSegment(kind=kind, text=text))

        package = ContextPackage(
            chapter=request.chapter,
            segments=segments,
            metadata=self._measure(segments, warnings or []),
        )
        self._log_sizes(bank.novel_id, request.chapter, package.metadata)
        return package

    def _measure(self, segments: list[ContextSegment], warnings: list[ConflictWarning]) -> ContextMetadata:
        limit = self.settings.segment_soft_limit_chars
        total = sum(s.chars for s in segments)
        return ContextMetadata(
            segment_count=len(segments),
            total_chars=total,
            segment_sizes={s.kind.value: s.chars for s in segments},
            estimated_tokens=estimate_tokens(total, self.settings.tokens_per_char),
            oversized_segments=[s.kind.value for s in segments if s.chars > limit],
            warnings=list(warnings),
        )

    def _log_sizes(self, novel_id: int, chapter: int, meta: ContextMetadata):
        for kind in meta.oversized_segments:
            logger.warning(
                "Novel %d chapter %d: segment %s is %d chars, over the %d soft limit",
                novel_id, chapter, kind, meta.segment_sizes[kind], self.settings.segment_soft_limit_chars,
            )
        logger.info(
            "Novel %d chapter %d context: %d segments, %d chars, ~%d tokens, %d oversized, %d warnings",
            novel_id, chapter, meta.segment_count, meta.total_chars, meta.estimated_tokens,
            len(meta.oversized_segments), len(meta.warnings),
        )

    # ---- Segment builders ----

    def _system_identity(self, data: _AssemblyInput) -> str:
        return data.request.system_identity or self.default_system_identity

    @staticmethod
    def _basic_info(data: _AssemblyInput) -> str:
        novel = data.request.novel
        lines = ["**作品基本信息**", f"- 标题: 《{novel.title}》"]
        if novel.genre:
            lines.append(f"- 类型: {novel.genre}")
        if novel.tags:
            lines.append(f"- 标签: {novel.tags}")
        return "\n".join(lines)

    @staticmethod
    def _outline(data: _AssemblyInput) -> str:
        novel = data.request.novel
        lines = []
        if novel.outline.strip():
            lines += ["**小说总大纲**", novel.outline.strip()]
        if novel.main_themes:
            lines.append(f"- 核心主题: {'、'.join(novel.main_themes)}")
        return "\n".join(lines)

    @staticmethod
    def _current_volume(data: _AssemblyInput) -> str:
        volume = data.request.volume
        if volume is None:
            return ""
        lines = ["**当前卷信息**", f"- 卷标题: {volume.title}"]
        if volume.theme:
            lines.append(f"- 核心主题: {volume.theme}")
        if volume.description:
            lines.append(f"- 卷描述: {volume.description}")
        if volume.content_outline:
            lines.append(f"- 卷详情大纲:\n{volume.content_outline}")
        if volume.key_events:
            lines.append(f"- 关键事件: {volume.key_events}")
        if volume.chapter_start is not None and volume.chapter_end is not None:
            lines.append(f"- 章节范围: 第{volume.chapter_start}章 - 第{volume.chapter_end}章")
        return "\n".join(lines)

    @staticmethod
    def _character_roster(data: _AssemblyInput) -> str:
        chosen = data.selection.characters
        if not chosen:
            return ""
        lines = [f"**本章入选角色（合计{len(chosen)}人）**", ""]
        for item in chosen:
            p = item.profile
            lines.append(f"• **{p.name}** ({p.role_tag.value}, {p.status})")
            if not is_placeholder(p.hook_line):
                lines.append(f"  简介：{p.hook_line}")
            for label, value in (("性格", p.core_trait), ("说话风格", p.speech_style), ("欲望", p.desire)):
                if not is_placeholder(value):
                    lines.append(f"  {label}：{value}")
            if p.links_to_protagonist and p.links_to_protagonist != PLACEHOLDER_LINKS:
                lines.append(f"  与主角：{p.links_to_protagonist}")
            if not is_placeholder(p.trigger_conditions):
                lines.append(f"  触发条件：{p.trigger_conditions}")
            lines.append(f"  相关性：{item.score.total:.1f}")
        lines += ["", "未入选角色只能以传闻、对话线索或背景形式出现，不得正面登场。"]
        return "\n".join(lines)

    @staticmethod
    def _protagonist_status(data: _AssemblyInput) -> str:
        status = data.bank.protagonist_status
        if status.is_empty():
            return ""
        protagonist = data.bank.protagonist()
        header = f"**主角现状（{protagonist.name}）**" if protagonist else "**主角现状**"
        lines = [header]
        if status.realm:
            lines.append(f"- 境界/等级: {status.realm}")
        if status.skills:
            lines.append(f"- 技能: {'、'.join(status.skills)}")
        if status.equipment:
            lines.append(f"- 装备/物品: {'、'.join(status.equipment)}")
        if status.location:
            lines.append(f"- 当前位置: {status.location}")
        if status.current_goal:
            lines.append(f"- 当前目标: {status.current_goal}")
        if status.relationships:
            rels = "；".join(f"{k}: {v}" for k, v in status.relationships.items())
            lines.append(f"- 重要关系: {rels}")
        if status.updated_chapter is not None:
            lines.append(f"（截至第{status.updated_chapter}章）")
        return "\n".join(lines)

    def _world_dictionary(self, data: _AssemblyInput) -> str:
        lines = []

        def group(title: str, items: list[ScoredEntity]):
            if items:
                lines.append(f"**{title}**")
                lines.extend(f"• {e.entity.name} - {e.entity.hook_line}" for e in items)
                lines.append("")

        group("势力组织", data.selection.organizations)
        group("场景地点", data.selection.locations)
        group("重要物件", data.selection.artifacts)

        reference = data.bank.last_updated_chapter
        window = self.settings.keyword_recent_chapters
        terms = [
            t for t in data.bank.world_terms.values()
            if t.description and (
                data.keywords.mentions(t.term)
                or (reference is not None and t.last_chapter is not None and reference - t.last_chapter <= window)
            )
        ]
        if terms:
            lines.append("**世界观词条**")
            lines.extend(f"• {t.term}: {t.description}" for t in sorted(terms, key=lambda t: t.term))

        if not lines:
            return ""
        return "\n".join(["**实体词典（本章相关）**", ""] + lines).rstrip()

    def _chapter_summaries(self, data: _AssemblyInput) -> str:
        chapter = data.request.chapter
        bank = data.bank
        window = self.settings.summary_window
        recent = sorted(c for c in set(bank.summaries) | set(bank.chronicle) if c < chapter)[-window:] if window else []

        lines = []
        recalled = [s for s in data.recalled if s.chapter not in recent and s.chapter < chapter]
        if recalled:
            lines.append("**相关旧章回顾**")
            lines.extend(f"第{s.chapter}章: {s.summary}" for s in sorted(recalled, key=lambda s: s.chapter))
            lines.append("")

        recent_lines = []
        for c in recent:
            summary = bank.summaries.get(c)
            event = bank.chronicle.get(c)
            text = summary.summary if summary else "；".join(event.events) if event else ""
            if event and event.timeline_info:
                text = f"{text}（{event.timeline_info}）" if text else event.timeline_info
            if text:
                recent_lines.append(f"第{c}章: {text}")
        if recent_lines:
            lines.append("**前期内容概括**")
            lines.extend(recent_lines)
        return "\n".join(lines)

    @staticmethod
    def _previous_chapter(data: _AssemblyInput) -> str:
        chapter = data.request.chapter
        text = data.request.previous_chapter_text.strip()
        if chapter <= 1 or not text:
            return ""
        lines = ["**上一章完整内容**"]
        if data.request.previous_chapter_title:
            lines.append(f"标题：{data.request.previous_chapter_title}")
        lines += [f"（第{chapter - 1}章）", "", text]
        return "\n".join(lines)

    def _foreshadowing(self, data: _AssemblyInput) -> str:
        chapter = data.request.chapter
        window = self.settings.resolved_foreshadowing_window
        open_records = sorted(
            (f for f in data.bank.foreshadowing if f.is_open),
            key=lambda f: (f.planted_chapter, f.content),
        )
        recently_resolved = [
            f for f in data.bank.foreshadowing
            if f.status == ForeshadowStatus.RESOLVED
            and f.resolved_chapter is not None and chapter - f.resolved_chapter <= window
        ]
        if not open_records and not recently_resolved:
            return ""

        lines = ["**伏笔与线索管理**"]
        if open_records:
            lines.append("- 未回收伏笔:")
            for f in open_records:
                extra = f"，{f.priority}" if f.priority else ""
                kind = f"[{f.type}] " if f.type else ""
                lines.append(f"  * {kind}{f.content}（第{f.planted_chapter}章埋下，{f.status.value}{extra}）")
        if recently_resolved:
            lines.append("- 近期已回收（勿重复回收）:")
            lines.extend(f"  * {f.content}（第{f.resolved_chapter}章回收）" for f in recently_resolved)
        return "\n".join(lines)

    @staticmethod
    def _user_direction(data: _AssemblyInput) -> str:
        direction = data.request.user_direction.strip()
        return f"**创作者特殊要求**: {direction}" if direction else ""

    @staticmethod
    def _chapter_task(data: _AssemblyInput) -> str:
        plan = data.request.plan
        lines = [f"**第{plan.chapter_number}章写作任务**"]
        if plan.title:
            lines.append(f"- 标题方向: {plan.title}")
        if plan.goal:
            lines.append(f"- 本章目标: {plan.goal}")
        if plan.summary:
            lines.append(f"- 情节概要: {plan.summary}")
        if plan.key_events:
            lines.append(f"- 关键事件: {'、'.join(plan.key_events)}")
        if plan.location or plan.scene:
            lines.append(f"- 场景: {' '.join(x for x in (plan.location, plan.scene) if x)}")
        if data.request.estimated_words:
            lines.append(f"- 字数要求: 约{data.request.estimated_words}字")
        lines.append("本段要求优先于前文任何冲突的指令。直接输出小说正文，不要任何说明文字。")
        return "\n".join(lines)
