"""Merge an extracted update batch into a manuscript's memory bank.

Numeric strength fields only ever rise, enrichment text is filled when
missing and replaced only by something longer, and counters are guarded by
the bank's merge ledger so re-merging a chapter never double counts.
Insignificant characters are routed to the cameo table; insignificant world
entities are not stored at all.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config.exceptions import MergeConflictError, ValidationError
from config.settings import Settings
from memory.store import ensure_single_protagonist
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
from models.character import ENRICHMENT_FIELDS, CameoRecord, CharacterProfile, is_placeholder
from models.enums import DEFAULT_STATUS, ForeshadowStatus, RoleTag
from models.plot import ChapterSummary, ChronicleEvent, ForeshadowingRecord
from models.world import WorldEntity, WorldTerm
from tools.text_utils import normalize_name

logger = logging.getLogger(__name__)


@dataclass
class MergeReport:
    """What one merge changed, for logging and for callers."""
    novel_id: int
    chapter: int
    repeat: bool = False
    characters_added: list[str] = field(default_factory=list)
    characters_updated: list[str] = field(default_factory=list)
    cameos_recorded: list[str] = field(default_factory=list)
    promoted_from_cameo: list[str] = field(default_factory=list)
    entities_added: list[str] = field(default_factory=list)
    entities_updated: list[str] = field(default_factory=list)
    entities_dropped: list[str] = field(default_factory=list)
    foreshadowing_added: int = 0
    foreshadowing_updated: int = 0
    events_added: int = 0
    terms_merged: int = 0
    protagonist_changes: list[str] = field(default_factory=list)
    rejected: list[MergeConflictError] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "chapter": self.chapter,
            "repeat": self.repeat,
            "characters_added": len(self.characters_added),
            "characters_updated": len(self.characters_updated),
            "cameos": len(self.cameos_recorded),
            "promoted": len(self.promoted_from_cameo),
            "entities_added": len(self.entities_added),
            "entities_updated": len(self.entities_updated),
            "entities_dropped": len(self.entities_dropped),
            "foreshadowing_added": self.foreshadowing_added,
            "foreshadowing_updated": self.foreshadowing_updated,
            "events_added": self.events_added,
            "terms": self.terms_merged,
            "rejected": len(self.rejected),
        }


class Merger:
    """Applies update batches to a memory bank in place."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def merge(self, bank: MemoryBank, batch: UpdateBatch, chapter: int) -> MergeReport:
        """Merge `batch`, extracted from `chapter`, into `bank`.

        Counters (appearance/mention counts, cameo chapter lists) only move
        the first time a chapter is merged; every other rule is monotone and
        safe to re-apply. An empty batch changes nothing, the merge ledger
        included.
        """
        report = MergeReport(novel_id=bank.novel_id, chapter=chapter)
        if batch.is_empty():
            logger.info("Chapter %d of novel %d: empty batch, nothing merged", chapter, bank.novel_id)
            return report
        report.repeat = chapter in bank.merged_chapters
        counted: set[tuple[str, str]] = set()

        for update in batch.character_updates:
            self._merge_character(bank, update, chapter, report, counted)
        for update in batch.world_entity_updates:
            self._merge_entity(bank, update, chapter, report, counted)
        for update in batch.foreshadowing_updates:
            self._merge_foreshadowing(bank, update, chapter, report)
        for update in batch.event_updates:
            self._merge_event(bank, update, chapter, report)
        for update in batch.worldview_updates:
            self._merge_term(bank, update, chapter, report)
        if batch.protagonist_status:
            self._merge_protagonist_status(bank, batch.protagonist_status, chapter)
        if batch.chapter_summary:
            bank.summaries[chapter] = ChapterSummary(chapter, batch.chapter_summary)

        bank.merged_chapters.add(chapter)
        if bank.last_updated_chapter is None or chapter > bank.last_updated_chapter:
            bank.last_updated_chapter = chapter
        report.protagonist_changes = ensure_single_protagonist(bank)

        logger.info("Merged chapter %d into novel %d: %s", chapter, bank.novel_id, report.summary())
        for conflict in report.rejected:
            logger.warning("Novel %d chapter %d: %s", bank.novel_id, chapter, conflict)
        return report

    # ---- Characters ----

    def is_cameo(self, update: CharacterUpdate) -> bool:
        """Any one weak signal routes a character to the cameo table; missing values never do."""
        s = self.settings
        if update.role_tag == RoleTag.CAMEO:
            return True
        if update.influence_score is not None and update.influence_score < s.cameo_min_influence:
            return True
        if update.screen_time is not None and update.screen_time < s.cameo_min_screen_time:
            return True
        if update.return_probability is not None and update.return_probability < s.cameo_min_return_probability:
            return True
        return False

    def _merge_character(
        self,
        bank: MemoryBank,
        update: CharacterUpdate,
        chapter: int,
        report: MergeReport,
        counted: set[tuple[str, str]],
    ):
        name = normalize_name(update.name)
        if not name:
            return
        count_it = not report.repeat and ("character", name) not in counted
        counted.add(("character", name))

        if self.is_cameo(update):
            profile = bank.characters.get(name)
            if profile is not None:
                # A tracked character with a quiet chapter is not demoted
                self._apply_status_and_strength(profile, update, chapter)
                profile.last_appearance = chapter
                if count_it:
                    profile.appearance_count += 1
                report.characters_updated.append(name)
            else:
                self._record_cameo(bank, name, update, chapter)
                report.cameos_recorded.append(name)
            return

        profile = bank.characters.get(name)
        if profile is None:
            profile = self._create_profile(bank, name, update, chapter)
            report.characters_added.append(name)
            cameo = bank.cameos.pop(name, None)
            if cameo is not None:
                self._absorb_cameo(profile, cameo, chapter)
                report.promoted_from_cameo.append(name)
                logger.info("Promoted cameo %s to a full profile (%s)", name, profile.role_tag.value)
            return

        self._update_profile(profile, update, chapter, count_it)
        report.characters_updated.append(name)

    def _create_profile(
        self, bank: MemoryBank, name: str, update: CharacterUpdate, chapter: int
    ) -> CharacterProfile:
        profile = CharacterProfile(
            name=name,
            role_tag=update.role_tag or RoleTag.SUPPORT,
            status=update.status or DEFAULT_STATUS,
            first_appearance=chapter,
            last_appearance=chapter,
            appearance_count=1,
            influence_score=update.influence_score,
            screen_time=update.screen_time,
            return_probability=update.return_probability,
        )
        if update.status:
            profile.status_change_chapter = chapter
        for field_name in ENRICHMENT_FIELDS:
            value = getattr(update, field_name)
            if value and not is_placeholder(value):
                setattr(profile, field_name, value)
        bank.characters[name] = profile
        return profile

    @staticmethod
    def _absorb_cameo(profile: CharacterProfile, cameo: CameoRecord, chapter: int):
        chapters = set(cameo.chapters) | {chapter}
        profile.first_appearance = min(chapters)
        profile.last_appearance = max(profile.last_appearance or chapter, chapter)
        profile.appearance_count = len(chapters)
        if is_placeholder(profile.hook_line) and cameo.hook_line:
            profile.hook_line = cameo.hook_line

    def _update_profile(self, profile: CharacterProfile, update: CharacterUpdate, chapter: int, count_it: bool):
        if update.role_tag is not None:
            profile.role_tag = update.role_tag
        self._apply_status_and_strength(profile, update, chapter)

        for field_name in ENRICHMENT_FIELDS:
            new = getattr(update, field_name)
            if not new or is_placeholder(new):
                continue
            current = getattr(profile, field_name)
            if is_placeholder(current) or len(new) > len(current.strip()):
                setattr(profile, field_name, new)

        profile.last_appearance = chapter
        if count_it:
            profile.appearance_count += 1

    @staticmethod
    def _apply_status_and_strength(profile: CharacterProfile, update: CharacterUpdate, chapter: int):
        if update.status and update.status != profile.status:
            profile.status = update.status
            profile.status_change_chapter = chapter
        for field_name in ("influence_score", "screen_time", "return_probability"):
            new = getattr(update, field_name)
            if new is None:
                continue
            current = getattr(profile, field_name)
            if current is None or new > current:
                setattr(profile, field_name, new)

    @staticmethod
    def _record_cameo(bank: MemoryBank, name: str, update: CharacterUpdate, chapter: int):
        cameo = bank.cameos.get(name)
        hook = update.hook_line if update.hook_line and not is_placeholder(update.hook_line) else ""
        if cameo is None:
            cameo = CameoRecord(name=name, hook_line=hook)
            bank.cameos[name] = cameo
            logger.debug("Recorded cameo %s: %s", name, hook)
        elif len(hook) > len(cameo.hook_line):
            cameo.hook_line = hook
        if chapter not in cameo.chapters:
            cameo.chapters.append(chapter)
            cameo.chapters.sort()

    # ---- Reclassification ----

    def demote_to_cameo(self, bank: MemoryBank, name: str) -> CameoRecord:
        """Move a full profile into the cameo table, keeping its name, hook and chapters."""
        name = normalize_name(name)
        profile = bank.characters.get(name)
        if profile is None:
            raise ValidationError(f"No character profile named {name!r}", {"novel_id": bank.novel_id})
        if profile.role_tag.is_core:
            raise ValidationError(
                f"{name} is {profile.role_tag.value}; core characters cannot be demoted",
                {"novel_id": bank.novel_id},
            )
        chapters = sorted({c for c in (profile.first_appearance, profile.last_appearance) if c is not None})
        cameo = bank.cameos.get(name) or CameoRecord(name=name)
        hook = "" if is_placeholder(profile.hook_line) else profile.hook_line
        if len(hook) > len(cameo.hook_line):
            cameo.hook_line = hook
        cameo.chapters = sorted(set(cameo.chapters) | set(chapters))
        bank.cameos[name] = cameo
        del bank.characters[name]
        ensure_single_protagonist(bank)
        logger.info("Novel %d: demoted %s to cameo", bank.novel_id, name)
        return cameo

    def promote_cameo(self, bank: MemoryBank, name: str, role_tag: RoleTag = RoleTag.SUPPORT) -> CharacterProfile:
        """Turn a cameo record into a full profile with placeholder enrichment."""
        name = normalize_name(name)
        cameo = bank.cameos.get(name)
        if cameo is None:
            raise ValidationError(f"No cameo named {name!r}", {"novel_id": bank.novel_id})
        if role_tag == RoleTag.CAMEO:
            raise ValidationError("Cannot promote a cameo to the CAMEO role", {"novel_id": bank.novel_id})
        profile = CharacterProfile(
            name=name,
            role_tag=role_tag,
            first_appearance=cameo.first_mention,
            last_appearance=cameo.last_mention,
            appearance_count=len(cameo.chapters),
        )
        if cameo.hook_line:
            profile.hook_line = cameo.hook_line
        bank.characters[name] = profile
        del bank.cameos[name]
        ensure_single_protagonist(bank)
        logger.info("Novel %d: promoted cameo %s to %s", bank.novel_id, name, role_tag.value)
        return profile

    def retag(self, bank: MemoryBank, name: str, role_tag: RoleTag) -> CharacterProfile:
        """Change the role of a full profile; a new PROTAGONIST displaces the old one."""
        name = normalize_name(name)
        profile = bank.characters.get(name)
        if profile is None:
            raise ValidationError(f"No character profile named {name!r}", {"novel_id": bank.novel_id})
        if role_tag == RoleTag.CAMEO:
            raise ValidationError(f"{name}: demote to cameo instead of retagging", {"novel_id": bank.novel_id})
        if role_tag == RoleTag.PROTAGONIST:
            for other in bank.characters.values():
                if other is not profile and other.role_tag == RoleTag.PROTAGONIST:
                    other.role_tag = RoleTag.MAJOR
        previous = profile.role_tag
        profile.role_tag = role_tag
        ensure_single_protagonist(bank)
        logger.info("Novel %d: %s retagged %s -> %s", bank.novel_id, name, previous.value, role_tag.value)
        return profile

    # ---- World entities ----

    def _merge_entity(
        self,
        bank: MemoryBank,
        update: WorldEntityUpdate,
        chapter: int,
        report: MergeReport,
        counted: set[tuple[str, str]],
    ):
        name = normalize_name(update.name)
        if not name:
            return
        influence = update.influence_score
        if influence is None or influence < self.settings.world_entity_min_influence:
            report.entities_dropped.append(name)
            logger.debug("Dropped low-influence world entity %s (%s)", name, influence)
            return

        count_it = not report.repeat and ("entity", name) not in counted
        counted.add(("entity", name))
        related = [n for n in (normalize_name(r) for r in update.related_characters) if n]

        entity = bank.world_entities.get(name)
        if entity is None:
            entity = WorldEntity(
                name=name,
                type=update.type,
                hook_line=update.hook_line,
                influence_score=influence,
                first_mention=chapter,
                last_mention=chapter,
                mention_count=1,
            )
            entity.add_related(related)
            bank.world_entities[name] = entity
            report.entities_added.append(name)
            return

        if entity.type != update.type:
            logger.debug("World entity %s keeps type %s (update said %s)", name, entity.type.value, update.type.value)
        entity.last_mention = chapter
        if count_it:
            entity.mention_count += 1
        if len(update.hook_line) > len(entity.hook_line):
            entity.hook_line = update.hook_line
        entity.influence_score = max(entity.influence_score or 0.0, influence)
        entity.add_related(related)
        report.entities_updated.append(name)

    # ---- Foreshadowing ----

    def _merge_foreshadowing(
        self, bank: MemoryBank, update: ForeshadowingUpdate, chapter: int, report: MergeReport
    ):
        record = bank.find_foreshadowing(update.content, update.type)
        if record is None:
            record = ForeshadowingRecord(
                content=update.content,
                type=update.type,
                status=update.status or ForeshadowStatus.ACTIVE,
                planted_chapter=update.planted_chapter or chapter,
                priority=update.priority or "",
                last_touched_chapter=chapter,
            )
            self._apply_resolution(record, update, chapter, report)
            bank.foreshadowing.append(record)
            report.foreshadowing_added += 1
            return

        if update.status is not None:
            if update.status.rank < record.status.rank:
                report.rejected.append(MergeConflictError(
                    f"foreshadowing '{record.content[:30]}'",
                    "status",
                    f"{record.status.value} cannot move back to {update.status.value}",
                ))
            else:
                record.status = update.status
        self._apply_resolution(record, update, chapter, report)
        if update.priority:
            record.priority = update.priority
        record.last_touched_chapter = chapter
        report.foreshadowing_updated += 1

    @staticmethod
    def _apply_resolution(
        record: ForeshadowingRecord, update: ForeshadowingUpdate, chapter: int, report: MergeReport
    ):
        resolved = update.resolved_chapter
        if resolved is None and record.status == ForeshadowStatus.RESOLVED and record.resolved_chapter is None:
            resolved = chapter
        if resolved is None:
            return
        if resolved < record.planted_chapter:
            report.rejected.append(MergeConflictError(
                f"foreshadowing '{record.content[:30]}'",
                "resolved_chapter",
                f"resolved at {resolved} before planted at {record.planted_chapter}",
            ))
            if (
                record.status == ForeshadowStatus.RESOLVED
                and record.resolved_chapter is None
                and chapter >= record.planted_chapter
            ):
                record.resolved_chapter = chapter
            return
        record.resolved_chapter = resolved

    # ---- Chronicle, glossary, protagonist, summary ----

    @staticmethod
    def _merge_event(bank: MemoryBank, update: EventUpdate, chapter: int, report: MergeReport):
        target = update.chapter if update.chapter and update.chapter > 0 else chapter
        record = bank.chronicle.get(target)
        if record is None:
            record = ChronicleEvent(chapter=target)
            bank.chronicle[target] = record
        report.events_added += record.add_events(update.descriptions())
        if update.timeline_info:
            record.timeline_info = update.timeline_info

    @staticmethod
    def _merge_term(bank: MemoryBank, update: WorldTermUpdate, chapter: int, report: MergeReport):
        term = normalize_name(update.term)
        if not term:
            return
        entry = bank.world_terms.get(term)
        if entry is None:
            entry = WorldTerm(term=term, first_chapter=chapter)
            bank.world_terms[term] = entry
        if update.description:
            entry.description = update.description
        if update.category and not entry.category:
            entry.category = update.category
        entry.last_chapter = chapter
        report.terms_merged += 1

    @staticmethod
    def _merge_protagonist_status(bank: MemoryBank, update: ProtagonistStatusUpdate, chapter: int):
        status = bank.protagonist_status
        for field_name in ("realm", "location", "current_goal"):
            value = getattr(update, field_name)
            if value:
                setattr(status, field_name, value)
        for field_name in ("skills", "equipment"):
            items = getattr(status, field_name)
            for item in getattr(update, field_name):
                if item not in items:
                    items.append(item)
        status.relationships.update(update.relationships)
        status.updated_chapter = chapter
