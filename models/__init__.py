"""Models package: memory records, update batch, enums and the SQLite backend."""

from models.bank import MemoryBank
from models.batch import (
    CharacterUpdate,
    EventUpdate,
    ForeshadowingUpdate,
    ProtagonistStatusUpdate,
    UpdateBatch,
    WorldEntityUpdate,
    WorldTermUpdate,
)
from models.character import CameoRecord, CharacterProfile, is_placeholder
from models.database import Database
from models.enums import (
    ConflictKind,
    EntityType,
    ForeshadowStatus,
    Lifecycle,
    RoleTag,
    SegmentKind,
    TERMINAL_STATUSES,
)
from models.plot import ChapterSummary, ChronicleEvent, ForeshadowingRecord, ProtagonistStatus
from models.world import WorldEntity, WorldTerm

__all__ = [
    "Database",
    "MemoryBank",
    "CharacterProfile",
    "CameoRecord",
    "is_placeholder",
    "WorldEntity",
    "WorldTerm",
    "ForeshadowingRecord",
    "ChronicleEvent",
    "ChapterSummary",
    "ProtagonistStatus",
    "UpdateBatch",
    "CharacterUpdate",
    "EventUpdate",
    "ForeshadowingUpdate",
    "WorldEntityUpdate",
    "WorldTermUpdate",
    "ProtagonistStatusUpdate",
    "RoleTag",
    "Lifecycle",
    "EntityType",
    "ForeshadowStatus",
    "SegmentKind",
    "ConflictKind",
    "TERMINAL_STATUSES",
]
