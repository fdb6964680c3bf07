# drainage/rules_runner.py
"""
Rules Runner - versioned derivations over raw sections.

1. Every classification pass appends a new rules run for the upload
2. One observation-rule row is written per raw observation (a section
   without observations gets the default "no defect" observation)
3. Failures mark the run failed and keep the rows already written
4. Dashboard data is composed from the latest successful run only; when
   there is none, a run is created on the spot
"""
from __future__ import annotations
import threading
import traceback
import weakref
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

import structlog

from .classifier import DefectClassifier
from .composer import estimate_cost
from .constants import (
    ADOPTABLE_NO,
    ADOPTABLE_YES,
    DEFAULT_OBSERVATION,
    NO_DEFECT_TEXT,
    PARSER_VERSION,
    RULESET_VERSION,
    RUN_FAILED,
    RUN_SUCCESS,
    SERVICE,
    STRUCTURAL,
)
from .errors import LockTimeoutError, RulesRunFailedError, RunCancelledError, RunFinalizedError
from .progress_tracker import ProgressTracker
from .section_processor import secstat_grade
from .splitter import assign_suffixes
from .store import FileLock, RulesStore

logger = structlog.get_logger(__name__)

_SECTION_FIELDS = ("start_mh", "finish_mh", "pipe_size", "pipe_material", "total_length")


@dataclass
class RulesRunResult:
    run_id: int
    upload_id: int
    sections_processed: int
    observations_created: int
    status: str  # success | failed
    error_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RulesRunner:
    """
    Run the classification pipeline for an upload and compose dashboard rows.

    Runs for the same upload are serialized by an in-process lock and, when
    `lock_dir` is set, by a file lock shared with other processes.

    Args:
        store: RulesStore holding sections and runs
        classifier: DefectClassifier (read-only, shared)
        lock_dir: Directory for per-upload lock files; None = in-process only
        lock_timeout: Seconds to wait for the upload lock
    """

    # entries go away once no run holds or waits on the lock
    _upload_locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
    _registry_lock = threading.Lock()

    def __init__(
        self,
        store: RulesStore,
        classifier: Optional[DefectClassifier] = None,
        lock_dir: Optional[str] = None,
        lock_timeout: float = 30.0,
        parser_version: str = PARSER_VERSION,
        ruleset_version: str = RULESET_VERSION,
    ):
        self.store = store
        self.classifier = classifier or DefectClassifier()
        self.lock_dir = Path(lock_dir) if lock_dir else None
        self.lock_timeout = lock_timeout
        self.parser_version = parser_version
        self.ruleset_version = ruleset_version

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------
    @classmethod
    def _lock_for(cls, upload_id: int) -> threading.Lock:
        with cls._registry_lock:
            return cls._upload_locks.setdefault(int(upload_id), threading.Lock())

    @contextmanager
    def _serialized(self, upload_id: int) -> Iterator[None]:
        lock = self._lock_for(upload_id)
        if not lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError(f"Upload {upload_id} is locked by another rules run")
        try:
            if self.lock_dir is None:
                yield
            else:
                with FileLock(str(self.lock_dir / f"upload_{int(upload_id)}.lock"), timeout=self.lock_timeout):
                    yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def run_classification_for_upload(
        self,
        upload_id: int,
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressTracker] = None,
    ) -> RulesRunResult:
        """
        Create a new rules run for an upload and classify every section.

        Args:
            upload_id: Upload whose sections are classified
            sector: Sector name passed to the classifier
            cost_bands: Optional user cost bands keyed by grade
            cancel_event: Checked between sections; when set the run is
                marked failed ("cancelled")
            progress: Optional tracker updated once per section

        Returns:
            RulesRunResult. A failed run is reported through `status` and
            `error_text`, never raised.

        Raises:
            LockTimeoutError: another run for the upload holds the lock
        """
        with self._serialized(upload_id):
            return self._run(int(upload_id), sector, cost_bands, cancel_event, progress)

    def _run(self, upload_id, sector, cost_bands, cancel_event, progress) -> RulesRunResult:
        run_id = self.store.create_run(upload_id, self.parser_version, self.ruleset_version)
        log = logger.bind(run_id=run_id, upload_id=upload_id)
        log.info("rules_run.started", sector=sector, ruleset_version=self.ruleset_version)

        sections_processed = 0
        observations_created = 0
        item_label = ""
        try:
            sections = self.store.list_sections(upload_id)
            if progress is not None:
                progress.start(len(sections), run_id=run_id, upload_id=upload_id)

            for section in sections:
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelledError(f"Rules run {run_id} cancelled")

                item_label = f"Item {section['item_no']}"
                observations = section.get("raw_observations") or [DEFAULT_OBSERVATION]
                for idx, observation in enumerate(observations):
                    row = self.process_observation(observation, sector, cost_bands)
                    self.store.insert_observation_rule(run_id, section["id"], idx, **row)
                    observations_created += 1

                sections_processed += 1
                if progress is not None:
                    progress.section_done(item_label, observations=len(observations))

        except RunCancelledError:
            self._finish_failed(run_id, "cancelled", log)
            log.warning("rules_run.cancelled", sections_processed=sections_processed)
            if progress is not None:
                progress.finish("cancelled", "cancelled")
            return RulesRunResult(run_id, upload_id, sections_processed, observations_created, RUN_FAILED, "cancelled")

        except Exception as e:
            error_text = traceback.format_exc()
            self._finish_failed(run_id, error_text, log)
            log.error(
                "rules_run.failed",
                error=str(e),
                item=item_label,
                sections_processed=sections_processed,
                observations_created=observations_created,
            )
            if progress is not None:
                progress.section_failed(item_label, str(e))
                progress.finish("failed", str(e))
            return RulesRunResult(run_id, upload_id, sections_processed, observations_created, RUN_FAILED, error_text)

        self.store.finish_run(run_id, RUN_SUCCESS)
        log.info(
            "rules_run.finished",
            sections_processed=sections_processed,
            observations_created=observations_created,
        )
        if progress is not None:
            progress.finish("completed")
        return RulesRunResult(run_id, upload_id, sections_processed, observations_created, RUN_SUCCESS)

    def _finish_failed(self, run_id: int, error_text: str, log) -> bool:
        """
        Mark a run failed, retrying once.

        The caller is already reporting a failure, so a store error here is
        logged and not raised. Returns True when the run ended up failed.
        """
        for attempt in (1, 2):
            try:
                self.store.finish_run(run_id, RUN_FAILED, error_text)
                return True
            except RunFinalizedError:
                log.warning("rules_run.already_finished", attempt=attempt)
                # on a retry the first attempt got through before raising
                return attempt > 1
            except Exception:
                log.error("rules_run.finalize_failed", attempt=attempt, exc_info=True)
        return False

    def process_observation(
        self,
        observation: str,
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> Dict[str, Any]:
        """Classify one raw observation into the column values of an observation-rule row."""
        result = self.classifier.classify(observation, sector, cost_bands)
        return {
            "mscc5": {
                "code": result.defect_code,
                "description": result.defect_description,
                "type": result.defect_type,
                "grade": result.severity_grade,
                "risk": result.risk_assessment,
                "codes": result.defect_codes,
            },
            "defect_type": result.defect_type,
            "severity_grade": result.severity_grade,
            "recommendation_text": result.recommendations,
            "adoptability": result.adoptable,
            "op_action_type": result.action_type,
            "pricing": {
                "estimated_cost": result.estimated_cost,
                "cost_band": estimate_cost(result.severity_grade),
                "patch_count": result.patch_count,
                "patching_cost": result.patching_cost,
            },
        }

    def get_latest_rules_run(self, upload_id: int) -> Optional[Dict[str, Any]]:
        return self.store.latest_successful_run(upload_id)

    # ------------------------------------------------------------------
    # Dashboard composition
    # ------------------------------------------------------------------
    def get_composed_section_data(
        self,
        upload_id: int,
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> Dict[str, Any]:
        """
        Dashboard rows for an upload from its latest successful run.

        When the upload has no successful run yet, one is created first.

        Returns:
            {"sections": [row, ...], "observations": [rule, ...], "rules_run": run}

        Raises:
            RulesRunFailedError: the run created for the request failed
        """
        run = self.get_latest_rules_run(upload_id)
        if run is None:
            logger.info("rules_run.backfill", upload_id=int(upload_id))
            result = self.run_classification_for_upload(upload_id, sector, cost_bands)
            if result.status != RUN_SUCCESS:
                raise RulesRunFailedError(result.run_id, result.error_text)
            run = self.store.get_run(result.run_id)

        rules = self.store.observation_rules(run["id"])
        by_section: Dict[int, List[Dict[str, Any]]] = {}
        for rule in rules:
            by_section.setdefault(rule["section_id"], []).append(rule)

        rows: List[Dict[str, Any]] = []
        for section in self.store.list_sections(upload_id):
            rows.extend(self.compose_section_rows(section, by_section.get(section["id"], []), run, cost_bands))

        return {"sections": rows, "observations": rules, "rules_run": run}

    def compose_section_rows(
        self,
        section: Mapping[str, Any],
        rules: List[Dict[str, Any]],
        run: Mapping[str, Any],
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Dashboard row(s) for one section.

        A section whose graded observations are both structural and service
        gives one row per type: the type seen first keeps the item number,
        the next gets suffix "a". SECSTAT grades replace the derived grade
        of their type; a single row takes the highest grade across types,
        the same as SectionProcessor.
        """
        rules = sorted(rules, key=lambda r: r["observation_idx"])
        order: List[str] = []
        for rule in rules:
            if rule["severity_grade"] > 0 and rule["defect_type"] not in order:
                order.append(rule["defect_type"])

        if set(order) >= {STRUCTURAL, SERVICE}:
            groups = [
                (dtype, suffix, [r for r in rules if r["severity_grade"] > 0 and r["defect_type"] == dtype])
                for dtype, suffix in zip(order, assign_suffixes(len(order)))
            ]
        else:
            groups = [(None, section.get("letter_suffix") or "", rules)]

        rows = []
        for dtype, suffix, group in groups:
            agg = self.aggregate_observations(group)
            row_type = dtype or agg["defect_type"]
            adoptable = agg["adoptability"]
            secstat = section.get("secstat_grades")
            type_grades = {row_type: agg["severity_grade"]}
            applied = False

            override = secstat_grade(secstat, row_type)
            if override is not None:
                type_grades[row_type] = override
                applied = True
            if dtype is None:
                # a SECSTAT grade for a type the observations never showed still counts
                for other in (STRUCTURAL, SERVICE):
                    other_grade = secstat_grade(secstat, other)
                    if other != row_type and other_grade is not None:
                        type_grades[other] = other_grade
                        applied = True

            row_type = max(type_grades, key=lambda t: (type_grades[t], t == row_type))
            grade = type_grades[row_type]
            if applied:
                any_no = any(r["adoptability"] == ADOPTABLE_NO for r in group)
                adoptable = ADOPTABLE_NO if any_no or grade >= 4 else ADOPTABLE_YES

            codes: List[str] = []
            for r in group:
                code = (r.get("mscc5") or {}).get("code")
                if code and r["severity_grade"] > 0 and code not in codes:
                    codes.append(code)

            rows.append({
                "section_id": section["id"],
                "upload_id": section["upload_id"],
                "item_no": section["item_no"],
                "letter_suffix": suffix,
                "item_label": f"{section['item_no']}{suffix}",
                **{f: section.get(f) for f in _SECTION_FIELDS},
                "defect_type": row_type,
                "severity_grade": grade,
                "defect_codes": codes,
                "recommendations": agg["recommendations"],
                "adoptable": adoptable,
                "estimated_cost": estimate_cost(grade, cost_bands),
                "secstat_applied": applied,
                "derived_at": run.get("finished_at"),
                "rules_run_id": run["id"],
                "ruleset_version": run["ruleset_version"],
            })
        return rows

    @staticmethod
    def aggregate_observations(rules: List[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Section-level view of observation-rule rows.

        grade = max, type = structural if any structural else service,
        recommendations = distinct non-empty texts joined with ". ",
        adoptability = No if any row is No else Yes.
        """
        if not rules:
            return {
                "defect_type": SERVICE,
                "severity_grade": 0,
                "recommendations": NO_DEFECT_TEXT,
                "adoptability": ADOPTABLE_YES,
            }

        recommendations: List[str] = []
        for rule in rules:
            text = (rule.get("recommendation_text") or "").strip()
            if text and text not in recommendations:
                recommendations.append(text)

        return {
            "defect_type": STRUCTURAL if any(r.get("defect_type") == STRUCTURAL for r in rules) else SERVICE,
            "severity_grade": max(int(r.get("severity_grade") or 0) for r in rules),
            "recommendations": ". ".join(recommendations) or NO_DEFECT_TEXT,
            "adoptability": ADOPTABLE_NO if any(r.get("adoptability") == ADOPTABLE_NO for r in rules) else ADOPTABLE_YES,
        }
