"""Read-only consistency checks over a memory bank.

Findings are advisory: they are returned alongside the context package and
logged, never raised and never written back.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from config.settings import Settings
from models.bank import MemoryBank
from models.enums import ConflictKind, ForeshadowStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictWarning:
    kind: ConflictKind
    subject: str
    message: str
    chapter: Optional[int] = None

    def __str__(self) -> str:
        return self.message


class ConflictDetector:
    """Runs every check against a bank and collects warnings."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def detect(self, bank: MemoryBank, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        checks: list[Callable[[MemoryBank, Optional[int]], list[ConflictWarning]]] = [
            self.check_terminated_reappearances,
            self.check_foreshadowing_timeline,
            self.check_duplicate_classification,
            self.check_stale_foreshadowing,
        ]
        warnings: list[ConflictWarning] = []
        for check in checks:
            try:
                warnings.extend(check(bank, current_chapter))
            except Exception:
                logger.exception("Conflict check %s failed for novel %d", check.__name__, bank.novel_id)
        if warnings:
            logger.info("Novel %d: %d consistency warnings", bank.novel_id, len(warnings))
        return warnings

    @staticmethod
    def check_terminated_reappearances(bank: MemoryBank, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        """A character in a terminal state who appears after the chapter that ended them."""
        found = []
        for profile in bank.characters.values():
            if not profile.is_terminated or profile.status_change_chapter is None:
                continue
            if profile.last_appearance is not None and profile.last_appearance > profile.status_change_chapter:
                found.append(ConflictWarning(
                    kind=ConflictKind.TERMINATED_REAPPEARS,
                    subject=profile.name,
                    message=(
                        f"{profile.name} is {profile.status} since chapter {profile.status_change_chapter} "
                        f"but appears again in chapter {profile.last_appearance}"
                    ),
                    chapter=profile.last_appearance,
                ))
        return found

    @staticmethod
    def check_foreshadowing_timeline(bank: MemoryBank, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        found = []
        for record in bank.foreshadowing:
            if record.resolved_chapter is not None and record.resolved_chapter < record.planted_chapter:
                found.append(ConflictWarning(
                    kind=ConflictKind.FORESHADOW_TIMELINE,
                    subject=record.content,
                    message=(
                        f"Foreshadowing '{record.content}' resolved in chapter {record.resolved_chapter} "
                        f"before it was planted in chapter {record.planted_chapter}"
                    ),
                    chapter=record.resolved_chapter,
                ))
        return found

    @staticmethod
    def check_duplicate_classification(bank: MemoryBank, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        return [
            ConflictWarning(
                kind=ConflictKind.DUPLICATE_CLASSIFICATION,
                subject=name,
                message=f"{name} is stored both as a full character and as a cameo",
            )
            for name in sorted(set(bank.characters) & set(bank.cameos))
        ]

    def check_stale_foreshadowing(self, bank: MemoryBank, current_chapter: Optional[int] = None) -> list[ConflictWarning]:
        """ACTIVE hints nobody has touched for longer than the configured threshold."""
        reference = current_chapter if current_chapter is not None else bank.last_updated_chapter
        if reference is None:
            return []
        threshold = self.settings.stale_foreshadowing_chapters
        found = []
        for record in bank.foreshadowing:
            if record.status != ForeshadowStatus.ACTIVE:
                continue
            last = record.last_touched_chapter or record.planted_chapter
            idle = reference - last
            if idle > threshold:
                found.append(ConflictWarning(
                    kind=ConflictKind.STALE_FORESHADOWING,
                    subject=record.content,
                    message=f"Foreshadowing '{record.content}' has been idle for {idle} chapters since chapter {last}",
                    chapter=last,
                ))
        return found
