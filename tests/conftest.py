"""Shared pytest fixtures for the novelmem test suite."""

import pytest
from unittest.mock import MagicMock, AsyncMock


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite database path."""
    return tmp_path / "test_memory.db"


@pytest.fixture
def db(tmp_db_path):
    """Return an initialized Database instance backed by a temp file."""
    from models.database import Database
    return Database(tmp_db_path)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """Return a Settings instance with all paths pointing to tmp_path."""
    from config.settings import Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "memory.db",
        chroma_persist_dir=tmp_path / "chroma",
        log_dir=tmp_path / "logs",
        extraction_timeout_seconds=5.0,
        extraction_max_retries=1,
    )


# ---------------------------------------------------------------------------
# LLM Client mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_llm():
    """Return a MagicMock replacing AgentSDKClient with an async generate()."""
    llm = MagicMock()
    llm.generate = AsyncMock(return_value="{}")
    llm.settings = MagicMock()
    llm.settings.llm_model_writing = "claude-opus-4-6"
    llm.settings.llm_model_extraction = "claude-haiku-4-5"
    return llm


# ---------------------------------------------------------------------------
# Memory fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    from memory.store import MemoryStore
    return MemoryStore()


@pytest.fixture
def merger(settings):
    from memory.merger import Merger
    return Merger(settings)


@pytest.fixture
def empty_bank():
    from models.bank import MemoryBank
    return MemoryBank(novel_id=1)


@pytest.fixture
def sample_bank():
    """A small bank as it would look after ten merged chapters."""
    from models.bank import MemoryBank
    from models.character import CameoRecord, CharacterProfile
    from models.enums import EntityType, ForeshadowStatus, RoleTag
    from models.plot import ChapterSummary, ChronicleEvent, ForeshadowingRecord, ProtagonistStatus
    from models.world import WorldEntity, WorldTerm

    bank = MemoryBank(novel_id=1, version=10, last_updated_chapter=10)
    bank.characters = {
        "林凡": CharacterProfile(
            name="林凡", role_tag=RoleTag.PROTAGONIST, first_appearance=1, last_appearance=10,
            appearance_count=10, influence_score=95, hook_line="被逐出宗门的少年剑修",
        ),
        "赵天": CharacterProfile(
            name="赵天", role_tag=RoleTag.ANTAGONIST, first_appearance=2, last_appearance=9,
            appearance_count=5, influence_score=80, hook_line="天剑门大师兄，处处针对林凡",
        ),
        "苏晴": CharacterProfile(
            name="苏晴", role_tag=RoleTag.MAJOR, first_appearance=3, last_appearance=10,
            appearance_count=6, influence_score=70, hook_line="药王谷传人，医术通神",
            links_to_protagonist="救过林凡一命",
        ),
        "老周": CharacterProfile(
            name="老周", role_tag=RoleTag.SUPPORT, first_appearance=4, last_appearance=6,
            appearance_count=2, influence_score=30, trigger_conditions="林凡回到青石镇",
        ),
    }
    bank.cameos = {"店小二": CameoRecord(name="店小二", hook_line="青石镇客栈伙计", chapters=[4])}
    bank.world_entities = {
        "天剑门": WorldEntity(
            name="天剑门", type=EntityType.ORGANIZATION, hook_line="东域第一剑宗，门规森严",
            influence_score=90, first_mention=1, last_mention=9, mention_count=6,
        ),
        "青石镇": WorldEntity(
            name="青石镇", type=EntityType.LOCATION, hook_line="林凡长大的边陲小镇",
            influence_score=40, first_mention=1, last_mention=6, mention_count=3,
        ),
    }
    bank.world_terms = {
        "剑意": WorldTerm(term="剑意", description="剑修对剑道的领悟", category="修炼", first_chapter=2, last_chapter=9),
    }
    bank.foreshadowing = [
        ForeshadowingRecord(content="玉佩中的残魂", type="MYSTERY", planted_chapter=1, last_touched_chapter=8),
        ForeshadowingRecord(
            content="赵天的身世", type="CONFLICT", status=ForeshadowStatus.RESOLVED,
            planted_chapter=3, resolved_chapter=9,
        ),
    ]
    bank.chronicle = {9: ChronicleEvent(chapter=9, events=["林凡与赵天决战"], timeline_info="三天后")}
    bank.summaries = {
        8: ChapterSummary(8, "林凡在药王谷养伤"),
        10: ChapterSummary(10, "林凡离开药王谷，前往天剑门"),
    }
    bank.protagonist_status = ProtagonistStatus(
        realm="筑基初期", skills=["青莲剑诀"], location="药王谷", current_goal="重返天剑门", updated_chapter=10,
    )
    bank.merged_chapters = set(range(1, 11))
    return bank
