"""Tests for read-only consistency checks."""

import pytest

from models.character import CameoRecord, CharacterProfile
from models.enums import ConflictKind, ForeshadowStatus
from models.plot import ForeshadowingRecord


@pytest.fixture
def detector(settings):
    from memory.conflicts import ConflictDetector
    return ConflictDetector(settings)


def _kinds(warnings):
    return [w.kind for w in warnings]


class TestTerminatedReappearance:
    def test_dead_character_appearing_later_flagged(self, detector, empty_bank):
        empty_bank.characters["赵天"] = CharacterProfile(
            name="赵天", status="DEAD", status_change_chapter=10, last_appearance=15,
        )
        warnings = detector.check_terminated_reappearances(empty_bank)
        assert len(warnings) == 1
        assert warnings[0].subject == "赵天"
        assert warnings[0].chapter == 15
        assert "15" in str(warnings[0])

    @pytest.mark.parametrize("last", [8, 10])
    def test_appearance_up_to_death_not_flagged(self, detector, empty_bank, last):
        empty_bank.characters["赵天"] = CharacterProfile(
            name="赵天", status="DEAD", status_change_chapter=10, last_appearance=last,
        )
        assert detector.check_terminated_reappearances(empty_bank) == []

    def test_living_character_not_flagged(self, detector, empty_bank):
        empty_bank.characters["苏晴"] = CharacterProfile(
            name="苏晴", status="INJURED", status_change_chapter=10, last_appearance=15,
        )
        assert detector.check_terminated_reappearances(empty_bank) == []


class TestForeshadowingChecks:
    def test_resolved_before_planted_flagged(self, detector, empty_bank):
        empty_bank.foreshadowing.append(ForeshadowingRecord(
            content="血誓", status=ForeshadowStatus.RESOLVED, planted_chapter=5, resolved_chapter=2,
        ))
        warnings = detector.check_foreshadowing_timeline(empty_bank)
        assert _kinds(warnings) == [ConflictKind.FORESHADOW_TIMELINE]

    def test_stale_active_hint_flagged(self, detector, sample_bank):
        warnings = detector.check_stale_foreshadowing(sample_bank, current_chapter=60)
        assert [w.subject for w in warnings] == ["玉佩中的残魂"]
        assert warnings[0].chapter == 8

    def test_threshold_is_exclusive(self, detector, sample_bank):
        assert detector.check_stale_foreshadowing(sample_bank, current_chapter=58) == []

    def test_stale_uses_last_updated_chapter_by_default(self, detector, sample_bank):
        sample_bank.last_updated_chapter = 70
        assert len(detector.check_stale_foreshadowing(sample_bank)) == 1

    def test_developing_hint_never_stale(self, detector, sample_bank):
        sample_bank.foreshadowing[0].status = ForeshadowStatus.DEVELOPING
        assert detector.check_stale_foreshadowing(sample_bank, current_chapter=200) == []


class TestDuplicateClassification:
    def test_name_in_both_tables_flagged(self, detector, sample_bank):
        sample_bank.cameos["苏晴"] = CameoRecord(name="苏晴", chapters=[2])
        warnings = detector.check_duplicate_classification(sample_bank)
        assert [w.subject for w in warnings] == ["苏晴"]


class TestDetect:
    def test_clean_bank_has_no_warnings(self, detector, sample_bank):
        assert detector.detect(sample_bank) == []

    def test_collects_all_kinds(self, detector, sample_bank):
        sample_bank.characters["赵天"].status = "DEAD"
        sample_bank.characters["赵天"].status_change_chapter = 5
        sample_bank.cameos["苏晴"] = CameoRecord(name="苏晴")
        warnings = detector.detect(sample_bank, current_chapter=70)
        assert set(_kinds(warnings)) == {
            ConflictKind.TERMINATED_REAPPEARS,
            ConflictKind.DUPLICATE_CLASSIFICATION,
            ConflictKind.STALE_FORESHADOWING,
        }

    def test_detect_does_not_modify_bank(self, detector, sample_bank):
        before = sample_bank.snapshot()
        detector.detect(sample_bank, current_chapter=70)
        assert sample_bank == before
