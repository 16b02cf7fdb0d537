"""Tests for chapter extraction strategies and the retrying extractor."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.batch import UpdateBatch


CHAPTER_TEXT = (
    "林凡看着远处的天剑门。苏晴说：“小心赵天。”"
    "林凡受伤了，但他决定前往青石镇。三天后，他突破了筑基。"
    "青莲心法终于大成。玉佩中似乎藏着神秘的秘密。"
)

GOOD_RESPONSE = json.dumps({
    "characterUpdates": [{"name": "林凡", "roleTag": "PROTAGONIST", "influenceScore": 95}],
    "chapterSummary": "林凡负伤突破",
}, ensure_ascii=False)


def _strategy(*results):
    strategy = MagicMock()
    strategy.extract = AsyncMock(side_effect=list(results))
    return strategy


class TestLLMExtractionStrategy:
    def test_prompt_lists_known_names(self, mock_llm):
        from memory.extractor import LLMExtractionStrategy
        prompt = LLMExtractionStrategy(mock_llm).build_prompt(5, "正文", ["林凡", "苏晴"])
        assert "第5章" in prompt
        assert "林凡、苏晴" in prompt
        assert "正文" in prompt
        assert '"characterUpdates"' in prompt

    def test_prompt_without_known_names(self, mock_llm):
        from memory.extractor import LLMExtractionStrategy
        assert "已知角色：暂无" in LLMExtractionStrategy(mock_llm).build_prompt(1, "正文", [])

    @pytest.mark.asyncio
    async def test_parses_fenced_json(self, mock_llm):
        from memory.extractor import LLMExtractionStrategy
        from tools.agent_sdk_client import PURPOSE_EXTRACTION
        mock_llm.generate.return_value = f"分析如下：\n```json\n{GOOD_RESPONSE}\n```"

        batch = await LLMExtractionStrategy(mock_llm).extract(5, "正文", [])

        assert batch.character_updates[0].name == "林凡"
        assert batch.chapter_summary == "林凡负伤突破"
        assert mock_llm.generate.call_args.args[1] == PURPOSE_EXTRACTION

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, mock_llm):
        from config.exceptions import ExtractionError
        from memory.extractor import LLMExtractionStrategy
        mock_llm.generate.return_value = "   "
        with pytest.raises(ExtractionError):
            await LLMExtractionStrategy(mock_llm).extract(5, "正文", [])

    @pytest.mark.asyncio
    async def test_non_json_raises_parse_error(self, mock_llm):
        from config.exceptions import LLMResponseParseError
        from memory.extractor import LLMExtractionStrategy
        mock_llm.generate.return_value = "这一章讲了林凡下山。"
        with pytest.raises(LLMResponseParseError):
            await LLMExtractionStrategy(mock_llm).extract(5, "正文", [])

    @pytest.mark.asyncio
    async def test_wrong_shape_yields_empty_batch(self, mock_llm):
        from memory.extractor import LLMExtractionStrategy
        mock_llm.generate.return_value = '{"characterUpdates": "none"}'
        batch = await LLMExtractionStrategy(mock_llm).extract(5, "正文", [])
        assert batch.is_empty()


class TestHeuristicExtractionStrategy:
    def _extract(self, known=("林凡", "赵天")):
        from memory.extractor import HeuristicExtractionStrategy
        return HeuristicExtractionStrategy().extract_sync(7, CHAPTER_TEXT, list(known))

    def test_characters_from_known_names_and_patterns(self):
        batch = self._extract()
        by_name = {u.name: u for u in batch.character_updates}
        assert {"林凡", "赵天", "苏晴"} <= set(by_name)
        assert by_name["林凡"].status == "INJURED"
        assert by_name["苏晴"].role_tag.value == "CAMEO"
        assert by_name["赵天"].role_tag is None

    def test_common_words_not_names(self):
        from memory.extractor import HeuristicExtractionStrategy
        batch = HeuristicExtractionStrategy().extract_sync(1, "他们说：“走吧。”", [])
        assert batch.character_updates == []

    def test_events_and_timeline(self):
        batch = self._extract()
        event = batch.event_updates[0]
        assert event.description == "三天后，他突破了筑基。"
        assert "”林凡受伤了，但他决定前往青石镇。" in event.events
        assert event.timeline_info == "三天后"

    def test_foreshadowing_classified(self):
        batch = self._extract()
        assert len(batch.foreshadowing_updates) == 1
        hint = batch.foreshadowing_updates[0]
        assert hint.type == "MYSTERY"
        assert hint.planted_chapter == 7

    def test_entities_and_terms(self):
        batch = self._extract()
        locations = [e for e in batch.world_entity_updates if e.type.value == "LOCATION"]
        assert any(e.name.endswith("青石镇") for e in locations)
        assert all(e.influence_score == 10 for e in locations)
        assert [t.term for t in batch.worldview_updates] == ["青莲心法"]
        assert batch.worldview_updates[0].category == "POWER_SYSTEM"

    def test_summary_is_leading_sentences(self):
        batch = self._extract()
        assert batch.chapter_summary.startswith("林凡看着远处的天剑门。")
        assert len(batch.chapter_summary) <= 200

    @pytest.mark.asyncio
    async def test_async_entry_point(self):
        from memory.extractor import HeuristicExtractionStrategy
        batch = await HeuristicExtractionStrategy().extract(7, CHAPTER_TEXT, ["林凡"])
        assert not batch.is_empty()


class TestExtractor:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self, settings):
        from memory.extractor import Extractor
        expected = UpdateBatch.from_payload({"chapterSummary": "ok"})
        strategy = _strategy(expected)

        batch = await Extractor(strategy, settings).extract(3, "正文", ["林凡"])

        assert batch is expected
        strategy.extract.assert_awaited_once_with(3, "正文", ["林凡"])

    @pytest.mark.asyncio
    async def test_blank_text_skips_strategy(self, settings):
        from memory.extractor import Extractor
        strategy = _strategy()
        batch = await Extractor(strategy, settings).extract(3, "  \n ")
        assert batch.is_empty()
        strategy.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_parse_error_retried_then_succeeds(self, settings):
        from config.exceptions import LLMResponseParseError
        from memory.extractor import Extractor
        expected = UpdateBatch.from_payload({"chapterSummary": "ok"})
        strategy = _strategy(LLMResponseParseError("bad"), expected)

        batch = await Extractor(strategy, settings).extract(3, "正文")

        assert batch is expected
        assert strategy.extract.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_every_time_gives_empty_batch(self, settings):
        from config.exceptions import LLMResponseParseError
        from memory.extractor import Extractor
        strategy = _strategy(LLMResponseParseError("bad"), LLMResponseParseError("bad"))

        batch = await Extractor(strategy, settings).extract(3, "正文")

        assert batch.is_empty()
        assert strategy.extract.await_count == settings.extraction_max_retries + 1

    @pytest.mark.asyncio
    async def test_timeout_gives_empty_batch(self, settings):
        from memory.extractor import Extractor
        fast = settings.model_copy(update={"extraction_timeout_seconds": 0.05, "extraction_max_retries": 0})

        class SlowStrategy:
            async def extract(self, chapter, text, known_names):
                await asyncio.sleep(1)
                return UpdateBatch.from_payload({"chapterSummary": "late"})

        batch = await Extractor(SlowStrategy(), fast).extract(3, "正文")
        assert batch.is_empty()

    @pytest.mark.asyncio
    async def test_unexpected_error_not_retried(self, settings):
        from memory.extractor import Extractor
        strategy = _strategy(RuntimeError("boom"), UpdateBatch())

        batch = await Extractor(strategy, settings).extract(3, "正文")

        assert batch.is_empty()
        assert strategy.extract.await_count == 1

    @pytest.mark.asyncio
    async def test_fallback_used_after_failures(self, settings):
        from config.exceptions import ExtractionError
        from memory.extractor import Extractor, HeuristicExtractionStrategy
        strategy = _strategy(ExtractionError(3), ExtractionError(3))

        batch = await Extractor(strategy, settings, fallback=HeuristicExtractionStrategy()).extract(
            3, CHAPTER_TEXT, ["林凡"],
        )

        assert any(u.name == "林凡" for u in batch.character_updates)

    @pytest.mark.asyncio
    async def test_with_llm_strategy_malformed_response(self, settings, mock_llm):
        from memory.extractor import Extractor, LLMExtractionStrategy
        mock_llm.generate.return_value = "抱歉，我无法完成。"

        batch = await Extractor(LLMExtractionStrategy(mock_llm), settings).extract(3, "正文")

        assert batch.is_empty()
        assert mock_llm.generate.await_count == 2
