# tests/test_rules_runner.py
"""
Tests for versioned rules runs and dashboard composition (DuckDB on tmp_path).

Run:
    pytest tests/test_rules_runner.py -v
"""

import gc
import threading

import pytest

from drainage.classifier import DefectClassifier
from drainage.constants import NO_DEFECT_TEXT
from drainage.errors import (
    LockTimeoutError,
    RulesRunFailedError,
    RunFinalizedError,
    RunNotFoundError,
)
from drainage.progress_tracker import ProgressTracker
from drainage.rules_runner import RulesRunner
from drainage.section_processor import SectionProcessor
from drainage.store import RulesStore


class FailingStore(RulesStore):
    """Store whose n-th observation insert blows up."""

    def __init__(self, db_path, fail_on):
        self.fail_on = fail_on
        self.calls = 0
        super().__init__(db_path)

    def insert_observation_rule(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("disk full")
        return super().insert_observation_rule(*args, **kwargs)


class FlakyFinishStore(FailingStore):
    """Store whose first `finish_fails` finish_run calls raise."""

    def __init__(self, db_path, fail_on, finish_fails):
        self.finish_fails = finish_fails
        self.finish_calls = 0
        super().__init__(db_path, fail_on)

    def finish_run(self, *args, **kwargs):
        self.finish_calls += 1
        if self.finish_calls <= self.finish_fails:
            raise RuntimeError("connection lost")
        return super().finish_run(*args, **kwargs)


def _sections(n, observation="CR 1.0m crack"):
    return [{"item_no": i, "raw_observations": [observation]} for i in range(1, n + 1)]


@pytest.fixture(scope="module")
def classifier():
    return DefectClassifier()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "rules.duckdb")


@pytest.fixture
def store(db_path):
    return RulesStore(db_path)


@pytest.fixture
def runner(store, classifier):
    return RulesRunner(store, classifier)


# ============================================================
# TEST: RUN LIFECYCLE
# ============================================================

def test_successful_run(store, runner):
    store.add_sections(1, _sections(3))
    result = runner.run_classification_for_upload(1)

    assert result.status == "success"
    assert result.sections_processed == 3
    assert result.observations_created == 3
    assert result.error_text is None

    run = store.get_run(result.run_id)
    assert run["status"] == "success"
    assert run["finished_at"] is not None
    assert run["ruleset_version"] == "MSCC5-2024.1"
    assert runner.get_latest_rules_run(1)["id"] == result.run_id


def test_failure_keeps_partial_rows_and_rerun_succeeds(db_path, classifier):
    failing = FailingStore(db_path, fail_on=30)
    failing.add_sections(1, _sections(50))

    first = RulesRunner(failing, classifier).run_classification_for_upload(1)
    assert first.status == "failed"
    assert "disk full" in first.error_text
    assert first.sections_processed == 29
    assert first.observations_created == 29
    assert len(failing.observation_rules(first.run_id)) == 29

    run = failing.get_run(first.run_id)
    assert run["status"] == "failed"
    assert run["finished_at"] is not None
    assert "disk full" in run["error_text"]

    plain = RulesStore(db_path)
    runner = RulesRunner(plain, classifier)
    assert runner.get_latest_rules_run(1) is None

    second = runner.run_classification_for_upload(1)
    assert second.status == "success"
    assert second.run_id != first.run_id
    assert len(plain.observation_rules(second.run_id)) == 50
    # the failed run is kept as it was
    assert len(plain.observation_rules(first.run_id)) == 29
    assert runner.get_latest_rules_run(1)["id"] == second.run_id


def test_failed_run_is_finalized_after_store_hiccup(db_path, classifier):
    flaky = FlakyFinishStore(db_path, fail_on=2, finish_fails=1)
    flaky.add_sections(1, _sections(3))

    result = RulesRunner(flaky, classifier).run_classification_for_upload(1)

    assert result.status == "failed"
    assert "disk full" in result.error_text
    assert flaky.finish_calls == 2
    run = flaky.get_run(result.run_id)
    assert run["status"] == "failed"
    assert run["finished_at"] is not None


def test_failed_result_returned_when_finalize_keeps_failing(db_path, classifier):
    flaky = FlakyFinishStore(db_path, fail_on=1, finish_fails=10)
    flaky.add_sections(1, _sections(2))

    result = RulesRunner(flaky, classifier).run_classification_for_upload(1)

    assert result.status == "failed"
    assert "disk full" in result.error_text
    assert flaky.finish_calls == 2
    assert flaky.get_run(result.run_id)["status"] == "running"
    assert flaky.latest_successful_run(1) is None


def test_cancelled_run_survives_finalize_error(db_path, classifier):
    flaky = FlakyFinishStore(db_path, fail_on=0, finish_fails=1)
    flaky.add_sections(1, _sections(2))
    cancel = threading.Event()
    cancel.set()

    result = RulesRunner(flaky, classifier).run_classification_for_upload(1, cancel_event=cancel)

    assert result.status == "failed"
    assert result.error_text == "cancelled"
    assert flaky.get_run(result.run_id)["error_text"] == "cancelled"


def test_runs_are_append_only(store, runner):
    store.add_sections(1, _sections(2))
    a = runner.run_classification_for_upload(1)
    b = runner.run_classification_for_upload(1)

    assert a.run_id != b.run_id
    assert [r["id"] for r in store.list_runs(1)] == [a.run_id, b.run_id]
    assert runner.get_latest_rules_run(1)["id"] == b.run_id


def test_finished_run_is_immutable(store, runner):
    section_ids = store.add_sections(1, _sections(1))
    result = runner.run_classification_for_upload(1)

    with pytest.raises(RunFinalizedError):
        store.insert_observation_rule(
            result.run_id, section_ids[0], 1,
            mscc5={}, defect_type="service", severity_grade=0,
            recommendation_text="", adoptability="Yes", op_action_type=0,
        )
    with pytest.raises(RunFinalizedError):
        store.finish_run(result.run_id, "failed", "late")
    assert store.get_run(result.run_id)["status"] == "success"


def test_finish_run_validation(store):
    run_id = store.create_run(1, "1.0.0", "MSCC5-2024.1")
    with pytest.raises(ValueError):
        store.finish_run(run_id, "running")
    with pytest.raises(RunNotFoundError):
        store.finish_run(9999, "success")


# ============================================================
# TEST: OBSERVATION ROWS
# ============================================================

def test_one_row_per_observation(store, runner):
    store.add_sections(1, [{"item_no": 1, "raw_observations": ["FC 1.0m fracture", "DER 2.0m deposits 35%"]}])
    result = runner.run_classification_for_upload(1)
    rules = store.observation_rules(result.run_id)

    assert [r["observation_idx"] for r in rules] == [0, 1]
    assert rules[0]["mscc5"]["code"] == "FC"
    assert rules[0]["defect_type"] == "structural"
    assert rules[1]["mscc5"]["code"] == "DER"
    assert rules[1]["severity_grade"] == 4
    assert rules[1]["pricing"]["cost_band"] == "£10,000-50,000"


def test_section_without_observations_gets_default_row(store, runner):
    store.add_sections(1, [{"item_no": 1, "raw_observations": []}])
    result = runner.run_classification_for_upload(1)
    rules = store.observation_rules(result.run_id)

    assert result.observations_created == 1
    assert len(rules) == 1
    assert rules[0]["severity_grade"] == 0
    assert rules[0]["adoptability"] == "Yes"


def test_process_observation_row(runner):
    row = runner.process_observation("FC 1.0m fracture")
    assert row["mscc5"]["code"] == "FC"
    assert row["mscc5"]["grade"] == 3
    assert row["severity_grade"] == 3
    assert row["op_action_type"] == 6
    assert row["pricing"]["estimated_cost"] == "£2,000-10,000"


# ============================================================
# TEST: DASHBOARD COMPOSITION
# ============================================================

def test_backfill_creates_one_run(store, runner):
    store.add_sections(1, _sections(2))
    data = runner.get_composed_section_data(1)

    assert data["rules_run"]["status"] == "success"
    assert len(data["sections"]) == 2
    assert len(data["observations"]) == 2
    assert len(store.list_runs(1)) == 1

    runner.get_composed_section_data(1)
    assert len(store.list_runs(1)) == 1


def test_failed_backfill_raises(db_path, classifier):
    failing = FailingStore(db_path, fail_on=1)
    failing.add_sections(1, _sections(1))
    runner = RulesRunner(failing, classifier)

    with pytest.raises(RulesRunFailedError) as exc:
        runner.get_composed_section_data(1)
    assert "disk full" in exc.value.error_text


def test_dashboard_splits_dual_defect_section(store, runner):
    store.add_sections(1, [{
        "item_no": 22,
        "raw_observations": ["FC 4.2m circumferential fracture", "DER 9.0m coarse deposits"],
        "pipe_size": 150,
    }])
    rows = runner.get_composed_section_data(1)["sections"]

    assert [r["item_label"] for r in rows] == ["22", "22a"]
    assert [r["defect_type"] for r in rows] == ["structural", "service"]
    assert rows[0]["defect_codes"] == ["FC"]
    assert rows[1]["defect_codes"] == ["DER"]
    assert all(r["pipe_size"] == "150" for r in rows)
    assert all(r["estimated_cost"] == "£2,000-10,000" for r in rows)


def test_dashboard_secstat_override(store, runner):
    store.add_sections(1, [{
        "item_no": 5,
        "raw_observations": ["CR 1.0m crack"],
        "secstat_grades": {"structural": 4, "service": None},
    }])
    row = runner.get_composed_section_data(1)["sections"][0]

    assert row["severity_grade"] == 4
    assert row["adoptable"] == "No"
    assert row["estimated_cost"] == "£10,000-50,000"
    assert row["secstat_applied"] is True
    assert row["defect_codes"] == ["CR"]


def test_dashboard_secstat_for_type_absent_from_text(store, runner, classifier):
    section = {
        "item_no": 6,
        "raw_observations": ["No service or structural defect found"],
        "secstat_grades": {"structural": 4, "service": None},
    }
    store.add_sections(1, [section])
    rows = runner.get_composed_section_data(1)["sections"]

    assert len(rows) == 1
    row = rows[0]
    assert row["defect_type"] == "structural"
    assert row["severity_grade"] == 4
    assert row["adoptable"] == "No"
    assert row["estimated_cost"] == "£10,000-50,000"
    assert row["secstat_applied"] is True
    assert SectionProcessor(classifier).process_section(section).section_grade == row["severity_grade"]


def test_dashboard_secstat_lower_other_type_keeps_derived_row(store, runner):
    store.add_sections(1, [{
        "item_no": 7,
        "raw_observations": ["DER 2.0m deposits 35%"],
        "secstat_grades": {"structural": 1, "service": None},
    }])
    row = runner.get_composed_section_data(1)["sections"][0]

    assert row["defect_type"] == "service"
    assert row["severity_grade"] == 4
    assert row["secstat_applied"] is True


def test_dashboard_clean_section(store, runner):
    store.add_sections(1, [{"item_no": 3, "raw_observations": ["No action required"]}])
    data = runner.get_composed_section_data(1)
    row = data["sections"][0]

    assert row["item_label"] == "3"
    assert row["severity_grade"] == 0
    assert row["defect_codes"] == []
    assert row["recommendations"] == NO_DEFECT_TEXT
    assert row["estimated_cost"] == "£0"
    assert row["rules_run_id"] == data["rules_run"]["id"]
    assert row["derived_at"] == data["rules_run"]["finished_at"]


def test_dashboard_user_cost_bands(store, runner):
    store.add_sections(1, _sections(1))
    row = runner.get_composed_section_data(1, cost_bands={2: "£900"})["sections"][0]
    assert row["severity_grade"] == 2
    assert row["estimated_cost"] == "£900"


def test_aggregate_observations():
    assert RulesRunner.aggregate_observations([]) == {
        "defect_type": "service",
        "severity_grade": 0,
        "recommendations": NO_DEFECT_TEXT,
        "adoptability": "Yes",
    }

    rules = [
        {"defect_type": "service", "severity_grade": 2, "recommendation_text": "Jet", "adoptability": "Yes"},
        {"defect_type": "structural", "severity_grade": 4, "recommendation_text": "Reline", "adoptability": "No"},
        {"defect_type": "service", "severity_grade": 1, "recommendation_text": "Jet", "adoptability": "Yes"},
    ]
    agg = RulesRunner.aggregate_observations(rules)
    assert agg["defect_type"] == "structural"
    assert agg["severity_grade"] == 4
    assert agg["recommendations"] == "Jet. Reline"
    assert agg["adoptability"] == "No"


def test_aggregate_blank_recommendations():
    agg = RulesRunner.aggregate_observations(
        [{"defect_type": "service", "severity_grade": 1, "recommendation_text": "  ", "adoptability": "Yes"}]
    )
    assert agg["recommendations"] == NO_DEFECT_TEXT


# ============================================================
# TEST: PROGRESS / CANCELLATION / LOCKING
# ============================================================

def test_progress_is_reported(store, runner):
    store.add_sections(1, _sections(3))
    tracker = ProgressTracker()
    runner.run_classification_for_upload(1, progress=tracker)

    assert tracker.state.total_sections == 3
    assert tracker.state.sections_done == 3
    assert tracker.state.observations == 3
    assert tracker.state.run_id is not None
    assert tracker.state.status == "completed"


def test_cancel_between_sections(store, runner):
    store.add_sections(1, _sections(5))
    cancel = threading.Event()
    tracker = ProgressTracker()
    tracker.subscribe(lambda state: cancel.set() if state.sections_done >= 1 else None)

    result = runner.run_classification_for_upload(1, cancel_event=cancel, progress=tracker)

    assert result.status == "failed"
    assert result.error_text == "cancelled"
    assert result.sections_processed == 1
    assert len(store.observation_rules(result.run_id)) == 1
    assert store.get_run(result.run_id)["error_text"] == "cancelled"
    assert tracker.state.status == "cancelled"


def test_lock_timeout(store, classifier):
    lock = RulesRunner._lock_for(9001)
    lock.acquire()
    try:
        with pytest.raises(LockTimeoutError):
            RulesRunner(store, classifier, lock_timeout=0.05).run_classification_for_upload(9001)
    finally:
        lock.release()
    assert store.list_runs(9001) == []


def test_upload_lock_dropped_after_run(store, runner):
    store.add_sections(77, _sections(1))
    runner.run_classification_for_upload(77)
    gc.collect()

    assert 77 not in RulesRunner._upload_locks


def test_file_lock_per_upload(tmp_path, store, classifier):
    store.add_sections(1, _sections(1))
    runner = RulesRunner(store, classifier, lock_dir=str(tmp_path / "locks"))
    result = runner.run_classification_for_upload(1)

    assert result.status == "success"
    assert (tmp_path / "locks" / "upload_1.lock").exists()


def test_run_result_to_dict(store, runner):
    store.add_sections(1, _sections(1))
    d = runner.run_classification_for_upload(1).to_dict()
    assert d["status"] == "success"
    assert d["upload_id"] == 1
