"""Memory Manager Agent: keeps each manuscript's memory current and builds chapter context."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from agents.base_agent import BaseAgent
from config.exceptions import NovelMemoryError, StoreUnavailableError, ValidationError
from config.settings import Settings
from memory.assembler import ContextAssembler, ContextPackage, ContextRequest
from memory.conflicts import ConflictDetector, ConflictWarning
from memory.extractor import Extractor, LLMExtractionStrategy
from memory.keywords import build_chapter_keywords
from memory.merger import Merger, MergeReport
from memory.recall_index import SummaryRecallIndex
from memory.scorer import RelevanceScorer
from memory.selector import Selector
from memory.store import MemoryStore
from models.bank import MemoryBank
from models.batch import UpdateBatch
from models.enums import RoleTag
from models.plot import ChapterSummary
from tools.agent_sdk_client import AgentSDKClient
from tools.text_utils import normalize_name

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    """Outcome of one chapter's memory update. Failures are reported, not raised."""
    novel_id: int
    chapter: int
    ok: bool
    report: Optional[MergeReport] = None
    batch_counts: dict[str, int] = field(default_factory=dict)
    version: Optional[int] = None
    error: str = ""


class MemoryManagerAgent(BaseAgent):
    """Orchestrates extraction, merging, selection and assembly over a `MemoryStore`."""

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        llm_client: Optional[AgentSDKClient] = None,
        settings: Optional[Settings] = None,
        extractor: Optional[Extractor] = None,
        recall_index: Optional[SummaryRecallIndex] = None,
    ):
        super().__init__(llm_client, settings)
        self.store = store or MemoryStore()
        self.extractor = extractor or Extractor(LLMExtractionStrategy(self.llm), self.settings)
        self.merger = Merger(self.settings)
        self.selector = Selector(self.settings, RelevanceScorer(self.settings))
        self.detector = ConflictDetector(self.settings)
        self.assembler = ContextAssembler(
            self.settings,
            default_system_identity=self._load_sections("system_identity", "身份", "创作准则"),
        )
        self.recall_index = recall_index
        self._pending: dict[tuple[int, int], asyncio.Task] = {}

    # ---- Updates ----

    async def update_memory(self, novel_id: int, chapter_number: int, chapter_content: str) -> UpdateResult:
        """Extract a finished chapter and merge it into the manuscript's memory."""
        logger.info(f"Updating memory for novel {novel_id}, chapter {chapter_number}...")
        try:
            async with self.store.read(novel_id) as bank:
                known_names = bank.known_names()
        except NovelMemoryError as e:
            logger.error(f"Memory update for novel {novel_id} chapter {chapter_number} failed: {e}")
            return UpdateResult(novel_id, chapter_number, ok=False, error=str(e))

        batch = await self.extractor.extract(chapter_number, chapter_content, known_names)
        return await self.apply_batch(novel_id, chapter_number, batch)

    async def apply_batch(self, novel_id: int, chapter_number: int, batch: UpdateBatch) -> UpdateResult:
        """Merge an already extracted batch in one committed transaction."""
        result = UpdateResult(novel_id, chapter_number, ok=False, batch_counts=batch.counts())
        if batch.is_empty():
            logger.warning(f"Nothing extracted from chapter {chapter_number} of novel {novel_id}; memory unchanged")
            result.ok = True
            result.report = MergeReport(novel_id=novel_id, chapter=chapter_number)
            return result
        try:
            async with self.store.transaction(novel_id) as bank:
                result.report = self.merger.merge(bank, batch, chapter_number)
            result.version = bank.version
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable, chapter {chapter_number} of novel {novel_id} not merged: {e}")
            result.error = str(e)
            return result
        except NovelMemoryError as e:
            logger.error(f"Merge of chapter {chapter_number} into novel {novel_id} failed: {e}")
            result.error = str(e)
            return result

        result.ok = True
        if batch.chapter_summary:
            await self._index_summary(novel_id, chapter_number, batch)
        logger.info(f"Memory updated: novel {novel_id} chapter {chapter_number} -> version {result.version}")
        return result

    def schedule_update(self, novel_id: int, chapter_number: int, chapter_content: str) -> asyncio.Task:
        """Start `update_memory` in the background; a chapter already in flight returns its task."""
        key = (novel_id, chapter_number)
        pending = self._pending.get(key)
        if pending is not None and not pending.done():
            return pending

        task = asyncio.create_task(
            self.update_memory(novel_id, chapter_number, chapter_content),
            name=f"memory-update-{novel_id}-{chapter_number}",
        )
        self._pending[key] = task

        def _forget(done: asyncio.Task):
            if self._pending.get(key) is done:
                del self._pending[key]

        task.add_done_callback(_forget)
        return task

    async def wait_pending(self, novel_id: Optional[int] = None) -> list[UpdateResult]:
        tasks = [t for (nid, _), t in self._pending.items() if novel_id is None or nid == novel_id]
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def _index_summary(self, novel_id: int, chapter_number: int, batch: UpdateBatch):
        if self.recall_index is None:
            return
        names = "、".join(u.name for u in batch.character_updates)
        try:
            await asyncio.to_thread(
                self.recall_index.index_summary, novel_id, chapter_number, batch.chapter_summary, names
            )
        except Exception as e:
            logger.warning(f"Could not index summary of chapter {chapter_number} for novel {novel_id}: {e}")

    # ---- Context ----

    async def build_context(self, novel_id: int, request: ContextRequest) -> ContextPackage:
        """Assemble the context package for the chapter described by `request.plan`.

        Runs under the manuscript's read lock, so it sees either the state
        before an in-flight merge or after it, never a mix. If the store
        cannot be read the package is built from an empty memory.
        """
        try:
            async with self.store.read(novel_id) as bank:
                return await self._assemble(bank, request)
        except StoreUnavailableError as e:
            logger.error(f"Building chapter {request.chapter} context without memory for novel {novel_id}: {e}")
            return await self._assemble(MemoryBank(novel_id=novel_id), request)

    async def _assemble(self, bank: MemoryBank, request: ContextRequest) -> ContextPackage:
        chapter = request.chapter
        volume_outline = request.volume.content_outline if request.volume else ""
        keywords = build_chapter_keywords(request.plan, bank, volume_outline, self.settings)
        selection = self.selector.select(bank.characters.values(), bank.world_entities.values(), chapter, keywords)
        warnings = self.detector.detect(bank, chapter)
        recalled = await self._recall(bank, chapter, keywords.text)
        return self.assembler.assemble(bank, request, selection, keywords, warnings, recalled)

    async def _recall(self, bank: MemoryBank, chapter: int, query: str) -> list[ChapterSummary]:
        if self.recall_index is None or self.settings.recall_top_k <= 0:
            return []
        recent = [s.chapter for s in bank.recent_summaries(chapter, self.settings.summary_window)]
        try:
            return await asyncio.to_thread(
                self.recall_index.search,
                bank.novel_id,
                query,
                recent,
                chapter,
                self.settings.recall_top_k,
            )
        except Exception as e:
            logger.warning(f"Summary recall failed for novel {bank.novel_id} chapter {chapter}: {e}")
            return []

    async def detect_conflicts(self, novel_id: int, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        async with self.store.read(novel_id) as bank:
            return self.detector.detect(bank, current_chapter)

    # ---- Reclassification ----

    async def reclassify(self, novel_id: int, name: str, role_tag: RoleTag) -> str:
        """Move a character between the full and cameo tables or change its role.

        Raises:
            ValidationError: If the name is unknown or the move is not allowed.
        """
        name = normalize_name(name)
        async with self.store.transaction(novel_id) as bank:
            if role_tag == RoleTag.CAMEO:
                self.merger.demote_to_cameo(bank, name)
                outcome = f"{name} -> CAMEO"
            elif name in bank.cameos:
                profile = self.merger.promote_cameo(bank, name, role_tag)
                outcome = f"{profile.name} cameo -> {profile.role_tag.value}"
            elif name in bank.characters:
                profile = self.merger.retag(bank, name, role_tag)
                outcome = f"{profile.name} -> {profile.role_tag.value}"
            else:
                raise ValidationError(f"Unknown character {name!r}", {"novel_id": novel_id})
        logger.info(f"Novel {novel_id}: reclassified {outcome}")
        return outcome

    async def memory_stats(self, novel_id: int) -> dict[str, int]:
        async with self.store.read(novel_id) as bank:
            return {"version": bank.version, **bank.stats()}
