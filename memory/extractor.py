"""Chapter-text extraction into an `UpdateBatch`.

The primary strategy asks the extraction model for one JSON object; the
heuristic strategy pulls a thinner batch out of the raw text with regex
rules. `Extractor` wraps either with a timeout and bounded retries and turns
every failure into an empty batch.
"""

import asyncio
import logging
import re
from collections import Counter
from typing import Optional, Protocol, runtime_checkable

from config.exceptions import ExtractionError, LLMResponseParseError, NovelMemoryError
from config.settings import Settings
from models.batch import UpdateBatch
from tools.agent_sdk_client import PURPOSE_EXTRACTION
from tools.json_parsing import parse_json_object
from tools.text_utils import collapse_whitespace, split_sentences

logger = logging.getLogger(__name__)


@runtime_checkable
class GenerationClient(Protocol):
    async def generate(self, prompt: str, purpose: str = ..., system_prompt: Optional[str] = None) -> str: ...


@runtime_checkable
class ExtractionStrategy(Protocol):
    async def extract(self, chapter: int, text: str, known_names: list[str]) -> UpdateBatch: ...


_EXTRACTION_SYSTEM_PROMPT = "你是专业的小说分析助手，负责从章节正文中抽取结构化记忆信息。只输出JSON。"

_EXTRACTION_TEMPLATE = """请分析以下小说第{chapter}章的内容，提取关键信息用于长篇记忆管理。

已知角色：{known_names}

章节内容：
{text}

请提取以下信息并以JSON格式返回：
1. 角色信息：对每个出场角色提供 name、roleTag(PROTAGONIST|ANTAGONIST|MAJOR|SUPPORT|CAMEO)、
   influenceScore(对主线影响0-100)、screenTime(本章戏份占比0-1)、returnProbability(再登场可能性0-1)、
   status(当前状态)；首次出场或信息不全的角色补充 coreTrait、speechStyle、desire、hookLine(10-30字简介)、
   linksToProtagonist(与主角的关联)、triggerConditions(何时该正面登场，龙套填"无需触发")
2. 事件信息：本章重要事件，可附 timelineInfo(时间跨度，如"三天后")
3. 伏笔信息：新埋下的伏笔(status=ACTIVE)、推进中的伏笔(DEVELOPING)、已回收的伏笔(RESOLVED)
4. 世界观信息：新的设定或规则(term、description、category)
5. 主角状态：境界、技能、装备、位置、当前目标、重要关系变化
6. 章节概括：用100-200字概括本章主要情节
7. 实体抽取：首次或重要出现的势力组织、场景地点、重要物件，
   提供 name、type(ORGANIZATION|LOCATION|ARTIFACT)、hookLine、influenceScore(0-100)、relatedCharacters

严格按以下格式返回，不要输出任何其他内容：
{{
  "characterUpdates": [{{"name": "角色名", "roleTag": "MAJOR", "influenceScore": 60, "screenTime": 0.3,
    "returnProbability": 0.8, "status": "ACTIVE", "coreTrait": "", "speechStyle": "", "desire": "",
    "hookLine": "", "linksToProtagonist": "", "triggerConditions": ""}}],
  "eventUpdates": [{{"description": "事件描述", "timelineInfo": ""}}],
  "foreshadowingUpdates": [{{"content": "伏笔内容", "type": "MYSTERY", "status": "ACTIVE", "priority": ""}}],
  "worldviewUpdates": [{{"term": "设定名", "description": "说明", "category": "分类"}}],
  "protagonistStatus": {{"realm": "", "skills": [], "equipment": [], "location": "", "currentGoal": "",
    "relationships": {{}}}},
  "chapterSummary": "章节概括",
  "worldEntities": [{{"name": "实体名称", "type": "ORGANIZATION", "hookLine": "", "influenceScore": 50,
    "relatedCharacters": []}}]
}}"""


class LLMExtractionStrategy:
    """One structured-analysis request per chapter."""

    def __init__(self, llm: GenerationClient):
        self.llm = llm

    def build_prompt(self, chapter: int, text: str, known_names: list[str]) -> str:
        return _EXTRACTION_TEMPLATE.format(
            chapter=chapter,
            known_names="、".join(known_names) if known_names else "暂无",
            text=text,
        )

    async def extract(self, chapter: int, text: str, known_names: list[str]) -> UpdateBatch:
        prompt = self.build_prompt(chapter, text, known_names)
        response = await self.llm.generate(prompt, PURPOSE_EXTRACTION, system_prompt=_EXTRACTION_SYSTEM_PROMPT)
        if not response or not response.strip():
            raise ExtractionError(chapter, "extraction model returned no content")
        payload = parse_json_object(response)
        return UpdateBatch.from_payload(payload)


# ---- Rule-based extraction ----

_CJK = r"[一-龥]"
_NAME_PATTERNS = [
    re.compile(rf"({_CJK}{{2,4}}?)说道?[：:]"),
    re.compile(rf"({_CJK}{{2,4}}?)道[：:]"),
    re.compile(rf"({_CJK}{{2,4}}?)笑[着了]?道"),
    re.compile(rf"({_CJK}{{2,4}}?)看[着了向]"),
    re.compile(rf"({_CJK}{{2,4}}?)的[脸眼手]"),
]
COMMON_WORDS = frozenset({
    "这个", "那个", "什么", "怎么", "为什么", "因为", "所以", "但是", "然后", "现在",
    "时候", "地方", "东西", "事情", "问题", "方法", "结果", "开始", "结束", "继续",
    "他们", "我们", "你们", "她们", "自己", "对方", "众人", "所有人",
})

_STATUS_CUES = [
    (("死了", "死亡"), "DEAD"),
    (("离开", "走了"), "ABSENT"),
    (("受伤", "负伤"), "INJURED"),
]

_EVENT_CUES = ("死了|死亡|去世", "结婚|成婚|大婚", "觉醒|突破|晋级|升级", "战斗|打斗|厮杀|决战",
               "发现|找到|获得", "离开|前往|到达|抵达", "决定|打算|计划")
_FORESHADOW_CUES = ("奇怪|神秘|诡异|异常", "似乎|好像|仿佛|就像", "突然|忽然",
                    "预感|感觉|直觉", "秘密|隐瞒|不可告人", "将来|以后|终有一天")
_TIME_RE = re.compile(r"[0-9一二三四五六七八九十百]+(?:年|个月|天|日)后|第二天|次日|一周后|半年后")

_ENTITY_PATTERNS = {
    "ORGANIZATION": re.compile(rf"{_CJK}{{2,6}}(?:宗门|门派|教派|帮派|联盟|公会|宗|派|帮)"),
    "LOCATION": re.compile(rf"{_CJK}{{2,4}}(?:城|村|镇|山|谷|峰|岛|秘境)"),
    "ARTIFACT": re.compile(rf"{_CJK}{{2,4}}(?:剑|刀|鼎|印|珠|镜|丹)"),
}
_TERM_RE = re.compile(rf"{_CJK}{{2,6}}(?:功法|心法|秘籍|武技|法术|神通)")

MAX_EVENTS = 5
MAX_FORESHADOWING = 3
_ENTITY_SCORE_PER_MENTION = 10


def _sentences_with(sentences: list[str], cues: tuple[str, ...], limit: int, max_len: int) -> list[str]:
    found = []
    for cue in cues:
        pattern = re.compile(cue)
        for sentence in sentences:
            if len(found) >= limit:
                return found
            if pattern.search(sentence) and 5 < len(sentence) < max_len and sentence not in found:
                found.append(sentence)
    return found


def _classify_foreshadowing(content: str) -> str:
    for chars, label in (("死亡", "DEATH"), ("爱情", "ROMANCE"), ("战斗", "CONFLICT"), ("秘谜", "MYSTERY"), ("力能", "POWER")):
        if any(c in content for c in chars):
            return label
    return "OTHER"


def _context(text: str, term: str, radius: int = 30) -> str:
    idx = text.find(term)
    if idx == -1:
        return ""
    return collapse_whitespace(text[max(0, idx - radius): idx + len(term) + radius])


class HeuristicExtractionStrategy:
    """Regex rules over the raw chapter text; no generation call.

    Names come from dialogue/action patterns plus already-known names found
    verbatim. A name seen only once is reported as a cameo.
    """

    async def extract(self, chapter: int, text: str, known_names: list[str]) -> UpdateBatch:
        return self.extract_sync(chapter, text, known_names)

    def extract_sync(self, chapter: int, text: str, known_names: list[str]) -> UpdateBatch:
        sentences = split_sentences(text)
        payload = {
            "characterUpdates": self._characters(text, known_names),
            "eventUpdates": self._events(text, sentences),
            "foreshadowingUpdates": [
                {"content": s, "type": _classify_foreshadowing(s), "status": "ACTIVE", "plantedChapter": chapter}
                for s in _sentences_with(sentences, _FORESHADOW_CUES, MAX_FORESHADOWING, 80)
            ],
            "worldEntities": self._entities(text),
            "worldviewUpdates": [
                {"term": term, "description": _context(text, term), "category": "POWER_SYSTEM"}
                for term in dict.fromkeys(_TERM_RE.findall(text))
            ],
            "chapterSummary": "".join(sentences[:3])[:200],
        }
        batch = UpdateBatch.from_payload(payload)
        logger.info("Heuristic extraction for chapter %d: %s", chapter, batch.counts())
        return batch

    @staticmethod
    def _characters(text: str, known_names: list[str]) -> list[dict]:
        names: list[str] = [n for n in known_names if n and n in text]
        for pattern in _NAME_PATTERNS:
            for name in pattern.findall(text):
                if name not in COMMON_WORDS and name not in names:
                    names.append(name)

        updates = []
        for name in names:
            update: dict = {"name": name}
            for cues, status in _STATUS_CUES:
                if any(name + cue in text for cue in cues):
                    update["status"] = status
                    break
            if text.count(name) <= 1 and name not in known_names:
                update["roleTag"] = "CAMEO"
            updates.append(update)
        return updates

    @staticmethod
    def _events(text: str, sentences: list[str]) -> list[dict]:
        events = _sentences_with(sentences, _EVENT_CUES, MAX_EVENTS, 100)
        if not events:
            return []
        time_match = _TIME_RE.search(text)
        timeline = time_match.group(0) if time_match else ""
        return [{"description": events[0], "events": events[1:], "timelineInfo": timeline}]

    @staticmethod
    def _entities(text: str) -> list[dict]:
        entities = []
        for type_, pattern in _ENTITY_PATTERNS.items():
            for name, count in Counter(pattern.findall(text)).items():
                entities.append({
                    "name": name,
                    "type": type_,
                    "hookLine": _context(text, name),
                    "influenceScore": min(100, count * _ENTITY_SCORE_PER_MENTION),
                })
        return entities


class Extractor:
    """Runs a strategy under a timeout with bounded retries; never raises."""

    def __init__(
        self,
        strategy: ExtractionStrategy,
        settings: Optional[Settings] = None,
        fallback: Optional[ExtractionStrategy] = None,
    ):
        self.strategy = strategy
        self.settings = settings or Settings()
        self.fallback = fallback

    async def extract(self, chapter: int, text: str, known_names: Optional[list[str]] = None) -> UpdateBatch:
        known_names = known_names or []
        if not text or not text.strip():
            logger.warning("Chapter %d has no text; nothing to extract", chapter)
            return UpdateBatch()

        attempts = self.settings.extraction_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                batch = await asyncio.wait_for(
                    self.strategy.extract(chapter, text, known_names),
                    timeout=self.settings.extraction_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Extraction for chapter %d timed out after %.0fs (attempt %d/%d)",
                    chapter, self.settings.extraction_timeout_seconds, attempt, attempts,
                )
                continue
            except LLMResponseParseError as e:
                logger.warning(
                    "Extraction response for chapter %d is not JSON (attempt %d/%d): %s",
                    chapter, attempt, attempts, e.message,
                )
                continue
            except NovelMemoryError as e:
                logger.warning("Extraction for chapter %d failed (attempt %d/%d): %s", chapter, attempt, attempts, e)
                continue
            except Exception:
                logger.exception("Unexpected extraction error for chapter %d", chapter)
                break

            logger.info("Extracted chapter %d: %s", chapter, batch.counts())
            return batch

        if self.fallback is not None:
            try:
                batch = await self.fallback.extract(chapter, text, known_names)
                logger.warning("Chapter %d fell back to %s", chapter, type(self.fallback).__name__)
                return batch
            except Exception:
                logger.exception("Fallback extraction failed for chapter %d", chapter)

        logger.warning("Chapter %d: extraction gave up, no memory update this chapter", chapter)
        return UpdateBatch()
