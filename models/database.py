"""SQLite persistence for memory banks."""

import json
import logging
import shutil
import sqlite3
from pathlib import Path
from typing import Optional

from config.exceptions import StoreUnavailableError
from models.bank import MemoryBank
from models.character import CameoRecord, CharacterProfile
from models.enums import EntityType, ForeshadowStatus, RoleTag
from models.plot import ChapterSummary, ChronicleEvent, ForeshadowingRecord, ProtagonistStatus
from models.world import WorldEntity, WorldTerm

logger = logging.getLogger(__name__)

# SQL for creating all tables
_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS characters (
    novel_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    role_tag TEXT DEFAULT 'SUPPORT',
    status TEXT DEFAULT 'ACTIVE',
    status_change_chapter INTEGER,
    first_appearance INTEGER,
    last_appearance INTEGER,
    appearance_count INTEGER DEFAULT 0,
    influence_score REAL,
    screen_time REAL,
    return_probability REAL,
    core_trait TEXT DEFAULT '',
    speech_style TEXT DEFAULT '',
    desire TEXT DEFAULT '',
    hook_line TEXT DEFAULT '',
    links_to_protagonist TEXT DEFAULT '',
    trigger_conditions TEXT DEFAULT '',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (novel_id, name)
);

CREATE TABLE IF NOT EXISTS cameos (
    novel_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    hook_line TEXT DEFAULT '',
    chapters TEXT,
    PRIMARY KEY (novel_id, name)
);

CREATE TABLE IF NOT EXISTS world_entities (
    novel_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    hook_line TEXT DEFAULT '',
    influence_score REAL DEFAULT 0,
    related_characters TEXT,
    first_mention INTEGER,
    last_mention INTEGER,
    mention_count INTEGER DEFAULT 0,
    PRIMARY KEY (novel_id, name)
);

CREATE TABLE IF NOT EXISTS world_terms (
    novel_id INTEGER NOT NULL,
    term TEXT NOT NULL,
    description TEXT DEFAULT '',
    category TEXT DEFAULT '',
    first_chapter INTEGER,
    last_chapter INTEGER,
    PRIMARY KEY (novel_id, term)
);

CREATE TABLE IF NOT EXISTS foreshadowing (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    novel_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    content TEXT NOT NULL,
    type TEXT DEFAULT '',
    status TEXT DEFAULT 'ACTIVE',
    planted_chapter INTEGER DEFAULT 0,
    resolved_chapter INTEGER,
    priority TEXT DEFAULT '',
    last_touched_chapter INTEGER
);

CREATE TABLE IF NOT EXISTS chronicle (
    novel_id INTEGER NOT NULL,
    chapter_number INTEGER NOT NULL,
    events TEXT,
    timeline_info TEXT DEFAULT '',
    PRIMARY KEY (novel_id, chapter_number)
);

CREATE TABLE IF NOT EXISTS chapter_summaries (
    novel_id INTEGER NOT NULL,
    chapter_number INTEGER NOT NULL,
    summary TEXT NOT NULL,
    PRIMARY KEY (novel_id, chapter_number)
);

CREATE TABLE IF NOT EXISTS protagonist_status (
    novel_id INTEGER PRIMARY KEY,
    realm TEXT DEFAULT '',
    skills TEXT,
    equipment TEXT,
    location TEXT DEFAULT '',
    current_goal TEXT DEFAULT '',
    relationships TEXT,
    updated_chapter INTEGER
);

CREATE TABLE IF NOT EXISTS merge_ledger (
    novel_id INTEGER NOT NULL,
    chapter_number INTEGER NOT NULL,
    merged_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (novel_id, chapter_number)
);

CREATE TABLE IF NOT EXISTS memory_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    novel_id INTEGER NOT NULL,
    version INTEGER NOT NULL,
    last_updated_chapter INTEGER,
    stats TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

# Indexes added via migration (idempotent)
_MIGRATION_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_foreshadowing_novel ON foreshadowing(novel_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_foreshadowing_open ON foreshadowing(novel_id, status)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_novel_version ON memory_versions(novel_id, version)",
    "CREATE INDEX IF NOT EXISTS idx_world_entities_type ON world_entities(novel_id, entity_type)",
]

# Tables rewritten wholesale on every save, keyed by novel_id
_SNAPSHOT_TABLES = (
    "characters", "cameos", "world_entities", "world_terms",
    "foreshadowing", "chronicle", "chapter_summaries", "protagonist_status",
)


def _dump(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def _load(text: Optional[str], default):
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON column ignored: %r", text[:80])
        return default


class Database:
    """SQLite store backend: one row per remembered entity, one snapshot per commit."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_CREATE_TABLES_SQL)
        self._migrate()

    def _migrate(self):
        """Apply idempotent schema migrations (indexes, constraints)."""
        with self._get_conn() as conn:
            for sql in _MIGRATION_SQL:
                try:
                    conn.execute(sql)
                except sqlite3.OperationalError as e:
                    logger.debug("Migration skipped (already applied): %s", e)

    def backup_database(self, target_path: str | Path) -> Path:
        """Create a backup copy of the database.

        Args:
            target_path: Path for the backup file.

        Returns:
            Path to the backup file.
        """
        target = Path(target_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(str(self.db_path), str(target))
        logger.info("Database backed up to %s", target)
        return target

    # ---- StoreBackend ----

    def load(self, novel_id: int) -> MemoryBank:
        """Read the latest committed memory bank; unknown ids yield an empty bank."""
        try:
            with self._get_conn() as conn:
                return self._read_bank(conn, novel_id)
        except sqlite3.Error as e:
            raise StoreUnavailableError(novel_id, f"load failed: {e}") from e

    def save(self, bank: MemoryBank) -> None:
        """Replace the stored state of `bank.novel_id` in a single transaction."""
        try:
            with self._get_conn() as conn:
                self._write_bank(conn, bank)
        except sqlite3.Error as e:
            raise StoreUnavailableError(bank.novel_id, f"save failed: {e}") from e
        logger.debug("Saved memory bank novel=%d version=%d", bank.novel_id, bank.version)

    # ---- Inspection ----

    def list_novels(self) -> list[int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT DISTINCT novel_id FROM memory_versions ORDER BY novel_id"
            ).fetchall()
            return [r["novel_id"] for r in rows]

    def get_versions(self, novel_id: int) -> list[dict]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT version, last_updated_chapter, stats, created_at FROM memory_versions "
                "WHERE novel_id = ? ORDER BY version",
                (novel_id,),
            ).fetchall()
            return [
                {
                    "version": r["version"],
                    "last_updated_chapter": r["last_updated_chapter"],
                    "stats": _load(r["stats"], {}),
                    "created_at": r["created_at"],
                }
                for r in rows
            ]

    # ---- Reading ----

    def _read_bank(self, conn: sqlite3.Connection, novel_id: int) -> MemoryBank:
        bank = MemoryBank(novel_id=novel_id)

        row = conn.execute(
            "SELECT version, last_updated_chapter FROM memory_versions "
            "WHERE novel_id = ? ORDER BY version DESC LIMIT 1",
            (novel_id,),
        ).fetchone()
        if row:
            bank.version = row["version"]
            bank.last_updated_chapter = row["last_updated_chapter"]

        for r in conn.execute("SELECT * FROM characters WHERE novel_id = ?", (novel_id,)):
            bank.characters[r["name"]] = CharacterProfile(
                name=r["name"],
                role_tag=RoleTag.parse(r["role_tag"], RoleTag.SUPPORT),
                status=r["status"],
                status_change_chapter=r["status_change_chapter"],
                first_appearance=r["first_appearance"],
                last_appearance=r["last_appearance"],
                appearance_count=r["appearance_count"],
                influence_score=r["influence_score"],
                screen_time=r["screen_time"],
                return_probability=r["return_probability"],
                core_trait=r["core_trait"],
                speech_style=r["speech_style"],
                desire=r["desire"],
                hook_line=r["hook_line"],
                links_to_protagonist=r["links_to_protagonist"],
                trigger_conditions=r["trigger_conditions"],
            )

        for r in conn.execute("SELECT * FROM cameos WHERE novel_id = ?", (novel_id,)):
            bank.cameos[r["name"]] = CameoRecord(
                name=r["name"], hook_line=r["hook_line"], chapters=_load(r["chapters"], []),
            )

        for r in conn.execute("SELECT * FROM world_entities WHERE novel_id = ?", (novel_id,)):
            entity_type = EntityType.parse(r["entity_type"])
            if entity_type is None:
                logger.warning("Skipping world entity %r with unknown type %r", r["name"], r["entity_type"])
                continue
            bank.world_entities[r["name"]] = WorldEntity(
                name=r["name"],
                type=entity_type,
                hook_line=r["hook_line"],
                influence_score=r["influence_score"],
                related_characters=_load(r["related_characters"], []),
                first_mention=r["first_mention"],
                last_mention=r["last_mention"],
                mention_count=r["mention_count"],
            )

        for r in conn.execute("SELECT * FROM world_terms WHERE novel_id = ?", (novel_id,)):
            bank.world_terms[r["term"]] = WorldTerm(
                term=r["term"], description=r["description"], category=r["category"],
                first_chapter=r["first_chapter"], last_chapter=r["last_chapter"],
            )

        for r in conn.execute(
            "SELECT * FROM foreshadowing WHERE novel_id = ? ORDER BY position", (novel_id,)
        ):
            bank.foreshadowing.append(ForeshadowingRecord(
                content=r["content"],
                type=r["type"],
                status=ForeshadowStatus.parse(r["status"]) or ForeshadowStatus.ACTIVE,
                planted_chapter=r["planted_chapter"],
                resolved_chapter=r["resolved_chapter"],
                priority=r["priority"],
                last_touched_chapter=r["last_touched_chapter"],
            ))

        for r in conn.execute("SELECT * FROM chronicle WHERE novel_id = ?", (novel_id,)):
            bank.chronicle[r["chapter_number"]] = ChronicleEvent(
                chapter=r["chapter_number"],
                events=_load(r["events"], []),
                timeline_info=r["timeline_info"],
            )

        for r in conn.execute("SELECT * FROM chapter_summaries WHERE novel_id = ?", (novel_id,)):
            bank.summaries[r["chapter_number"]] = ChapterSummary(r["chapter_number"], r["summary"])

        r = conn.execute("SELECT * FROM protagonist_status WHERE novel_id = ?", (novel_id,)).fetchone()
        if r:
            bank.protagonist_status = ProtagonistStatus(
                realm=r["realm"],
                skills=_load(r["skills"], []),
                equipment=_load(r["equipment"], []),
                location=r["location"],
                current_goal=r["current_goal"],
                relationships=_load(r["relationships"], {}),
                updated_chapter=r["updated_chapter"],
            )

        bank.merged_chapters = {
            r["chapter_number"]
            for r in conn.execute("SELECT chapter_number FROM merge_ledger WHERE novel_id = ?", (novel_id,))
        }
        return bank

    # ---- Writing ----

    def _write_bank(self, conn: sqlite3.Connection, bank: MemoryBank):
        nid = bank.novel_id
        for table in _SNAPSHOT_TABLES:
            conn.execute(f"DELETE FROM {table} WHERE novel_id = ?", (nid,))

        conn.executemany(
            "INSERT INTO characters (novel_id, name, role_tag, status, status_change_chapter, "
            "first_appearance, last_appearance, appearance_count, influence_score, screen_time, "
            "return_probability, core_trait, speech_style, desire, hook_line, "
            "links_to_protagonist, trigger_conditions) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (nid, c.name, c.role_tag.value, c.status, c.status_change_chapter,
                 c.first_appearance, c.last_appearance, c.appearance_count, c.influence_score,
                 c.screen_time, c.return_probability, c.core_trait, c.speech_style, c.desire,
                 c.hook_line, c.links_to_protagonist, c.trigger_conditions)
                for c in bank.characters.values()
            ],
        )
        conn.executemany(
            "INSERT INTO cameos (novel_id, name, hook_line, chapters) VALUES (?, ?, ?, ?)",
            [(nid, c.name, c.hook_line, _dump(c.chapters)) for c in bank.cameos.values()],
        )
        conn.executemany(
            "INSERT INTO world_entities (novel_id, name, entity_type, hook_line, influence_score, "
            "related_characters, first_mention, last_mention, mention_count) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (nid, e.name, e.type.value, e.hook_line, e.influence_score,
                 _dump(e.related_characters), e.first_mention, e.last_mention, e.mention_count)
                for e in bank.world_entities.values()
            ],
        )
        conn.executemany(
            "INSERT INTO world_terms (novel_id, term, description, category, first_chapter, last_chapter) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (nid, t.term, t.description, t.category, t.first_chapter, t.last_chapter)
                for t in bank.world_terms.values()
            ],
        )
        conn.executemany(
            "INSERT INTO foreshadowing (novel_id, position, content, type, status, planted_chapter, "
            "resolved_chapter, priority, last_touched_chapter) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (nid, i, f.content, f.type, f.status.value, f.planted_chapter,
                 f.resolved_chapter, f.priority, f.last_touched_chapter)
                for i, f in enumerate(bank.foreshadowing)
            ],
        )
        conn.executemany(
            "INSERT INTO chronicle (novel_id, chapter_number, events, timeline_info) VALUES (?, ?, ?, ?)",
            [(nid, e.chapter, _dump(e.events), e.timeline_info) for e in bank.chronicle.values()],
        )
        conn.executemany(
            "INSERT INTO chapter_summaries (novel_id, chapter_number, summary) VALUES (?, ?, ?)",
            [(nid, s.chapter, s.summary) for s in bank.summaries.values()],
        )
        p = bank.protagonist_status
        if not p.is_empty():
            conn.execute(
                "INSERT INTO protagonist_status (novel_id, realm, skills, equipment, location, "
                "current_goal, relationships, updated_chapter) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (nid, p.realm, _dump(p.skills), _dump(p.equipment), p.location,
                 p.current_goal, _dump(p.relationships), p.updated_chapter),
            )

        conn.executemany(
            "INSERT OR IGNORE INTO merge_ledger (novel_id, chapter_number) VALUES (?, ?)",
            [(nid, ch) for ch in sorted(bank.merged_chapters)],
        )
        conn.execute(
            "INSERT OR REPLACE INTO memory_versions (novel_id, version, last_updated_chapter, stats) "
            "VALUES (?, ?, ?, ?)",
            (nid, bank.version, bank.last_updated_chapter, _dump(bank.stats())),
        )
