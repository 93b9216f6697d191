"""Tests for aggregating job records into a ProgressView.

Covers:
- default and empty views
- per-stage last-write-wins folding
- completed count, percentage and overall status rules
- error dominance and the latest-error choice
- forward compatibility with unknown stages and statuses
"""

import itertools

import pytest

from jobtrack.progress import OverallStatus, ProgressView, aggregate
from jobtrack.records import JobStatus
from jobtrack.stages import Stage

from tests.conftest import make_record, timed

STATUSES = ["queued", "running", "done", "error"]


class TestEmptyAndDefaults:
    """Test views built from no records."""

    def test_empty_records(self):
        view = aggregate([])
        assert view.overall_status is OverallStatus.NOT_STARTED
        assert view.progress_percentage == 0
        assert view.completed_stages == 0
        assert view.total_stages == 3
        assert view.error is None
        for stage in Stage:
            assert view.stage(stage).status is JobStatus.QUEUED

    def test_default_view_matches_empty_aggregate(self):
        assert ProgressView() == aggregate([])

    def test_document_id_is_stamped(self):
        assert aggregate([], document_id="doc-7").document_id == "doc-7"


class TestScenarios:
    """Test the documented end-to-end scenarios."""

    def test_ingest_done_ocr_running(self):
        view = aggregate(
            [
                make_record("ingest", "done"),
                make_record("ocr", "running"),
            ]
        )
        assert view.ingest.status is JobStatus.DONE
        assert view.ocr.status is JobStatus.RUNNING
        assert view.embed.status is JobStatus.QUEUED
        assert view.completed_stages == 1
        assert view.progress_percentage == 33
        assert view.overall_status is OverallStatus.IN_PROGRESS

    def test_embed_error_with_message(self):
        view = aggregate([make_record("embed", "error", error_message="timeout")])
        assert view.overall_status is OverallStatus.ERROR
        assert view.error == "timeout"
        assert view.completed_stages == 0

    def test_all_done(self):
        view = aggregate([make_record(stage, "done") for stage in ("ingest", "ocr", "embed")])
        assert view.overall_status is OverallStatus.COMPLETED
        assert view.progress_percentage == 100
        assert view.is_finished


class TestPercentages:
    """Test rounding of the completion percentage."""

    @pytest.mark.parametrize(
        "done_stages,expected",
        [
            ((), 0),
            (("ingest",), 33),
            (("ingest", "ocr"), 67),
            (("ingest", "ocr", "embed"), 100),
        ],
    )
    def test_percentage(self, done_stages, expected):
        view = aggregate([make_record(stage, "done") for stage in done_stages])
        assert view.progress_percentage == expected
        assert view.completed_stages == len(done_stages)


class TestOverallStatusRules:
    """Test overall status precedence over every combination of stage statuses."""

    @pytest.mark.parametrize("combo", list(itertools.product(STATUSES, repeat=3)))
    def test_rules_hold_for_every_combination(self, combo):
        records = [make_record(stage.value, status) for stage, status in zip(Stage, combo)]
        view = aggregate(records)

        assert view.total_stages == 3
        assert 0 <= view.completed_stages <= 3
        assert view.completed_stages == combo.count("done")
        assert view.progress_percentage == round(combo.count("done") / 3 * 100)

        if "error" in combo:
            assert view.overall_status is OverallStatus.ERROR
        elif combo.count("done") == 3:
            assert view.overall_status is OverallStatus.COMPLETED
        elif "done" in combo or "running" in combo:
            assert view.overall_status is OverallStatus.IN_PROGRESS
        else:
            assert view.overall_status is OverallStatus.NOT_STARTED

    def test_error_dominates_completed_stages(self):
        view = aggregate(
            [
                make_record("ingest", "done"),
                make_record("ocr", "done"),
                make_record("embed", "error", error_message="quota exceeded"),
            ]
        )
        assert view.overall_status is OverallStatus.ERROR
        assert view.completed_stages == 2


class TestLastWriteWins:
    """Test folding of several records for the same stage."""

    def test_later_record_overwrites_stage(self):
        view = aggregate(
            [
                make_record("ocr", "queued"),
                make_record("ocr", "running"),
                make_record("ocr", "done", output_data={"pages": 12}),
            ]
        )
        assert view.ocr.status is JobStatus.DONE
        assert view.ocr.metadata == {"pages": 12}
        assert view.completed_stages == 1

    def test_array_position_wins_over_timestamps(self):
        """An older update delivered last still wins; the known regression."""
        view = aggregate([make_record("ocr", "done"), make_record("ocr", "running")])
        assert view.ocr.status is JobStatus.RUNNING
        assert view.completed_stages == 0

    def test_recovered_stage_clears_error(self):
        view = aggregate(
            [
                make_record("ocr", "error", error_message="flaky"),
                make_record("ocr", "done"),
            ]
        )
        assert view.overall_status is OverallStatus.IN_PROGRESS
        assert view.error is None

    def test_exact_repeats_are_idempotent(self):
        records = [
            make_record("ingest", "done"),
            make_record("ocr", "error", error_message="bad scan"),
            make_record("embed", "running"),
        ]
        assert aggregate(records) == aggregate(records + records)

    def test_latest_error_is_last_deciding_record(self):
        view = aggregate(
            [
                make_record("ingest", "error", error_message="first"),
                make_record("ocr", "error", error_message="second"),
            ]
        )
        assert view.error == "second"

        view = aggregate(
            [
                make_record("ocr", "error", error_message="second"),
                make_record("ingest", "error", error_message="first"),
            ]
        )
        assert view.error == "first"

    def test_error_without_message(self):
        view = aggregate([make_record("ocr", "error")])
        assert view.overall_status is OverallStatus.ERROR
        assert view.error is None


class TestForwardCompatibility:
    """Test handling of stages and statuses outside the known sets."""

    def test_unknown_stage_ignored(self):
        view = aggregate(
            [
                make_record("ingest", "done"),
                make_record("translate", "error", error_message="ignored"),
            ]
        )
        assert view.overall_status is OverallStatus.IN_PROGRESS
        assert view.error is None
        assert set(view.stages) == {Stage.INGEST, Stage.OCR, Stage.EMBED}

    def test_unrecognized_status_passes_through(self):
        view = aggregate([make_record("ocr", "processing")])
        assert view.ocr.status is JobStatus.UNRECOGNIZED
        assert view.ocr.raw_status == "processing"
        assert view.completed_stages == 0
        assert view.overall_status is OverallStatus.NOT_STARTED


class TestStageViews:
    """Test the per-stage view fields."""

    def test_stage_fields_copied_from_record(self):
        record = make_record("ocr", "done", output_data={"annotations": 4}, **timed(12.5))
        view = aggregate([record]).ocr
        assert view.job_id == record.job_id
        assert view.started_at == record.started_at
        assert view.completed_at == record.completed_at
        assert view.duration.total_seconds() == 12.5
        assert view.metadata == {"annotations": 4}

    def test_view_is_immutable(self):
        view = aggregate([])
        with pytest.raises(Exception):  # Pydantic ValidationError
            view.progress_percentage = 50
