"""Versioned per-manuscript memory store with readers-writer locking.

Each manuscript has its own lock: merges take the write side through
`transaction()`, while scoring/selection/assembly take the read side through
`read()`. Readers of one manuscript run concurrently with each other and are
serialized against an in-flight merge; different manuscripts never wait on
each other.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from config.exceptions import NovelMemoryError, StoreUnavailableError
from models.bank import MemoryBank
from models.character import CharacterProfile
from models.enums import RoleTag

logger = logging.getLogger(__name__)


@runtime_checkable
class StoreBackend(Protocol):
    """Durable substrate for memory banks."""

    def load(self, novel_id: int) -> MemoryBank: ...

    def save(self, bank: MemoryBank) -> None: ...


class InMemoryBackend:
    """Process-local backend; keeps private copies so callers cannot alias stored state."""

    def __init__(self):
        self._banks: dict[int, MemoryBank] = {}

    def load(self, novel_id: int) -> MemoryBank:
        bank = self._banks.get(novel_id)
        return copy.deepcopy(bank) if bank else MemoryBank(novel_id=novel_id)

    def save(self, bank: MemoryBank) -> None:
        self._banks[bank.novel_id] = copy.deepcopy(bank)


class ReadWriteLock:
    """asyncio readers-writer lock; a waiting writer blocks new readers."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def locked_for_write(self) -> bool:
        return self._writer


def ensure_single_protagonist(bank: MemoryBank) -> list[str]:
    """Keep exactly one PROTAGONIST tag when any characters exist.

    With several tagged, the highest-importance one keeps the tag and the
    rest become MAJOR; with none tagged, the highest-importance character is
    promoted. Returns a description of every change made.
    """
    changes: list[str] = []
    if not bank.characters:
        return changes

    tagged = [c for c in bank.characters.values() if c.role_tag == RoleTag.PROTAGONIST]
    if len(tagged) == 1:
        return changes

    def _rank(profile: CharacterProfile):
        return (profile.importance, -(profile.first_appearance or 0))

    if tagged:
        keeper = max(tagged, key=_rank)
        for profile in tagged:
            if profile is not keeper:
                profile.role_tag = RoleTag.MAJOR
                changes.append(f"{profile.name}: PROTAGONIST -> MAJOR")
        logger.info("Novel %d: multiple protagonists tagged, kept %s", bank.novel_id, keeper.name)
        return changes

    candidates = [c for c in bank.characters.values() if c.role_tag != RoleTag.ANTAGONIST]
    if not candidates:
        return changes
    chosen = max(candidates, key=_rank)
    changes.append(f"{chosen.name}: {chosen.role_tag.value} -> PROTAGONIST")
    chosen.role_tag = RoleTag.PROTAGONIST
    logger.info("Novel %d: no protagonist tagged, promoted %s", bank.novel_id, chosen.name)
    return changes


class MemoryStore:
    """Committed memory banks keyed by novel id, fronted by per-novel locks."""

    def __init__(self, backend: Optional[StoreBackend] = None):
        self.backend = backend or InMemoryBackend()
        self._banks: dict[int, MemoryBank] = {}
        self._locks: dict[int, ReadWriteLock] = {}
        self._lock_dict_lock = asyncio.Lock()

    async def lock_for(self, novel_id: int) -> ReadWriteLock:
        """Get or create the lock guarding one manuscript."""
        async with self._lock_dict_lock:
            if novel_id not in self._locks:
                self._locks[novel_id] = ReadWriteLock()
            return self._locks[novel_id]

    async def _committed(self, novel_id: int) -> MemoryBank:
        bank = self._banks.get(novel_id)
        if bank is None:
            try:
                bank = await asyncio.to_thread(self.backend.load, novel_id)
            except NovelMemoryError:
                raise
            except Exception as e:
                raise StoreUnavailableError(novel_id, f"load failed: {e}") from e
            self._banks[novel_id] = bank
        return bank

    @asynccontextmanager
    async def read(self, novel_id: int) -> AsyncIterator[MemoryBank]:
        """Shared access to the latest committed bank. Callers must not mutate it."""
        lock = await self.lock_for(novel_id)
        async with lock.reading():
            yield await self._committed(novel_id)

    @asynccontextmanager
    async def transaction(self, novel_id: int) -> AsyncIterator[MemoryBank]:
        """Exclusive access to a working copy that is committed on clean exit.

        The working copy gets the next version number and is saved to the
        backend before it replaces the committed bank. If the body raises or
        the save fails, the committed bank is left untouched.
        """
        lock = await self.lock_for(novel_id)
        async with lock.writing():
            committed = await self._committed(novel_id)
            working = committed.snapshot()
            yield working
            working.version = committed.version + 1
            try:
                await asyncio.to_thread(self.backend.save, working)
            except NovelMemoryError:
                raise
            except Exception as e:
                raise StoreUnavailableError(novel_id, f"save failed: {e}") from e
            self._banks[novel_id] = working
            logger.debug("Committed novel=%d version=%d", novel_id, working.version)

    async def snapshot(self, novel_id: int) -> MemoryBank:
        """Private deep copy of the committed bank, safe to keep after the lock is released."""
        async with self.read(novel_id) as bank:
            return bank.snapshot()

    def evict(self, novel_id: int) -> None:
        """Drop the cached bank so the next access reloads from the backend."""
        self._banks.pop(novel_id, None)
