# drainage/store.py
"""
DuckDB persistence for sections and versioned rules runs.

- Raw-first: sections (with their raw observations) are written once at ingestion
- Append-only runs: every classification pass inserts a new rules_runs row
- Finished runs are immutable: no observation-rule insert or status change
  is accepted once finished_at is set
- File locking for per-upload serialization across processes
"""
from __future__ import annotations
import fcntl
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import duckdb
import pandas as pd
import structlog

from .constants import RUN_FAILED, RUN_RUNNING, RUN_SUCCESS
from .errors import LockTimeoutError, RunFinalizedError, RunNotFoundError
from .standards import AdoptionStandard

logger = structlog.get_logger(__name__)


# ============================================================================
# FILE LOCKING UTILITIES
# ============================================================================
class FileLock:
    """Simple file-based lock for concurrent access protection."""

    def __init__(self, lock_path: str, timeout: float = 30.0):
        self.lock_path = Path(lock_path)
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self.lock_file = None

    def __enter__(self):
        self.lock_file = open(self.lock_path, "w")
        start = time.time()
        while True:
            try:
                fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return self
            except OSError:
                if time.time() - start > self.timeout:
                    self.lock_file.close()
                    self.lock_file = None
                    raise LockTimeoutError(f"Could not acquire lock on {self.lock_path}")
                time.sleep(0.1)

    def __exit__(self, *args):
        if self.lock_file:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            self.lock_file.close()
            self.lock_file = None


# ============================================================================
# SCHEMA
# ============================================================================
_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS seq_sections START 1",
    "CREATE SEQUENCE IF NOT EXISTS seq_rules_runs START 1",
    "CREATE SEQUENCE IF NOT EXISTS seq_observation_rules START 1",
    """
    CREATE TABLE IF NOT EXISTS sections(
        id BIGINT PRIMARY KEY DEFAULT nextval('seq_sections'),
        upload_id BIGINT NOT NULL,
        item_no TEXT NOT NULL,
        letter_suffix TEXT,
        raw_observations TEXT NOT NULL,
        secstat_grades TEXT,
        start_mh TEXT,
        finish_mh TEXT,
        pipe_size TEXT,
        pipe_material TEXT,
        total_length TEXT,
        created_at TIMESTAMP DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rules_runs(
        id BIGINT PRIMARY KEY DEFAULT nextval('seq_rules_runs'),
        upload_id BIGINT NOT NULL,
        parser_version TEXT NOT NULL,
        ruleset_version TEXT NOT NULL,
        started_at TIMESTAMP NOT NULL,
        finished_at TIMESTAMP,
        status TEXT NOT NULL,
        error_text TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS observation_rules(
        id BIGINT PRIMARY KEY DEFAULT nextval('seq_observation_rules'),
        rules_run_id BIGINT NOT NULL,
        section_id BIGINT NOT NULL,
        observation_idx INTEGER NOT NULL,
        mscc5_json TEXT,
        defect_type TEXT,
        severity_grade INTEGER,
        recommendation_text TEXT,
        adoptability TEXT,
        op_action_type INTEGER,
        pricing_json TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sector_standards(
        sector TEXT PRIMARY KEY,
        belly_threshold INTEGER NOT NULL,
        standard_name TEXT NOT NULL,
        authority TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sections_upload ON sections(upload_id)",
    "CREATE INDEX IF NOT EXISTS idx_runs_upload ON rules_runs(upload_id)",
    "CREATE INDEX IF NOT EXISTS idx_obs_rules_run ON observation_rules(rules_run_id)",
]

_SECTION_FIELDS = ("start_mh", "finish_mh", "pipe_size", "pipe_material", "total_length")
_RUN_COLUMNS = ("id", "upload_id", "parser_version", "ruleset_version", "started_at", "finished_at", "status", "error_text")


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class RulesStore:
    """
    DuckDB-backed store.

    Each call opens its own short-lived connection so one store can be used
    from several threads.
    """

    def __init__(self, db_path: str = "data_store/rules.duckdb"):
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def _connect(self):
        return duckdb.connect(self.db_path)

    def init_db(self):
        with self._connect() as con:
            for stmt in _SCHEMA:
                con.execute(stmt)

    # ------------------------------------------------------------------
    # Sections (raw-first, written once)
    # ------------------------------------------------------------------
    def add_sections(self, upload_id: int, sections: Iterable[Dict[str, Any]]) -> List[int]:
        """
        Insert raw sections for an upload.

        Each dict needs `item_no` and `raw_observations` (list of str);
        `secstat_grades`, `letter_suffix` and pipe fields are optional.
        """
        ids = []
        with self._connect() as con:
            for s in sections:
                row = con.execute(
                    """
                    INSERT INTO sections(upload_id, item_no, letter_suffix, raw_observations, secstat_grades,
                                         start_mh, finish_mh, pipe_size, pipe_material, total_length)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    RETURNING id
                    """,
                    [
                        int(upload_id),
                        str(s["item_no"]),
                        s.get("letter_suffix") or None,
                        json.dumps(list(s.get("raw_observations") or [])),
                        json.dumps(s["secstat_grades"]) if s.get("secstat_grades") else None,
                        *[None if s.get(f) is None else str(s.get(f)) for f in _SECTION_FIELDS],
                    ],
                ).fetchone()
                ids.append(int(row[0]))
        logger.info("sections.ingested", upload_id=int(upload_id), count=len(ids))
        return ids

    def list_sections(self, upload_id: int) -> List[Dict[str, Any]]:
        with self._connect() as con:
            df = con.execute(
                "SELECT * FROM sections WHERE upload_id = ? ORDER BY id", [int(upload_id)]
            ).df()
        sections = []
        for rec in df.to_dict("records"):
            rec = {k: (None if isinstance(v, float) and pd.isna(v) else v) for k, v in rec.items()}
            rec["id"] = int(rec["id"])
            rec["upload_id"] = int(rec["upload_id"])
            rec["raw_observations"] = _loads(rec["raw_observations"]) or []
            rec["secstat_grades"] = _loads(rec.get("secstat_grades"))
            sections.append(rec)
        return sections

    # ------------------------------------------------------------------
    # Rules runs (append-only)
    # ------------------------------------------------------------------
    def create_run(self, upload_id: int, parser_version: str, ruleset_version: str) -> int:
        with self._connect() as con:
            row = con.execute(
                """
                INSERT INTO rules_runs(upload_id, parser_version, ruleset_version, started_at, status)
                VALUES (?, ?, ?, ?, ?)
                RETURNING id
                """,
                [int(upload_id), parser_version, ruleset_version, datetime.now(), RUN_RUNNING],
            ).fetchone()
        return int(row[0])

    def get_run(self, run_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {', '.join(_RUN_COLUMNS)} FROM rules_runs WHERE id = ?", [int(run_id)]
            ).fetchone()
        return dict(zip(_RUN_COLUMNS, row)) if row else None

    def list_runs(self, upload_id: int) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {', '.join(_RUN_COLUMNS)} FROM rules_runs WHERE upload_id = ? ORDER BY id",
                [int(upload_id)],
            ).fetchall()
        return [dict(zip(_RUN_COLUMNS, r)) for r in rows]

    def latest_successful_run(self, upload_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as con:
            row = con.execute(
                f"""
                SELECT {', '.join(_RUN_COLUMNS)} FROM rules_runs
                WHERE upload_id = ? AND status = ?
                ORDER BY id DESC
                LIMIT 1
                """,
                [int(upload_id), RUN_SUCCESS],
            ).fetchone()
        return dict(zip(_RUN_COLUMNS, row)) if row else None

    def _require_open(self, con, run_id: int):
        row = con.execute("SELECT finished_at FROM rules_runs WHERE id = ?", [int(run_id)]).fetchone()
        if row is None:
            raise RunNotFoundError(run_id)
        if row[0] is not None:
            raise RunFinalizedError(run_id)

    def insert_observation_rule(
        self,
        run_id: int,
        section_id: int,
        observation_idx: int,
        mscc5: Dict[str, Any],
        defect_type: str,
        severity_grade: int,
        recommendation_text: str,
        adoptability: str,
        op_action_type: int,
        pricing: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Append one observation-rule row; rejected once the run is finished."""
        with self._connect() as con:
            self._require_open(con, run_id)
            row = con.execute(
                """
                INSERT INTO observation_rules(rules_run_id, section_id, observation_idx, mscc5_json,
                    defect_type, severity_grade, recommendation_text, adoptability, op_action_type, pricing_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [
                    int(run_id), int(section_id), int(observation_idx),
                    json.dumps(mscc5, default=str),
                    defect_type, int(severity_grade), recommendation_text, adoptability,
                    int(op_action_type),
                    json.dumps(pricing, default=str) if pricing is not None else None,
                ],
            ).fetchone()
        return int(row[0])

    def finish_run(self, run_id: int, status: str, error_text: Optional[str] = None):
        """Set finished_at/status exactly once."""
        if status not in (RUN_SUCCESS, RUN_FAILED):
            raise ValueError(f"Invalid final status: {status}")
        with self._connect() as con:
            self._require_open(con, run_id)
            con.execute(
                "UPDATE rules_runs SET finished_at = ?, status = ?, error_text = ? WHERE id = ? AND finished_at IS NULL",
                [datetime.now(), status, error_text, int(run_id)],
            )

    def observation_rules(self, run_id: int) -> List[Dict[str, Any]]:
        with self._connect() as con:
            cur = con.execute(
                "SELECT * FROM observation_rules WHERE rules_run_id = ? ORDER BY section_id, observation_idx",
                [int(run_id)],
            )
            columns = [d[0] for d in cur.description]
            rows = cur.fetchall()
        rules = []
        for row in rows:
            rec = dict(zip(columns, row))
            rec["mscc5"] = _loads(rec.pop("mscc5_json"))
            rec["pricing"] = _loads(rec.pop("pricing_json"))
            rules.append(rec)
        return rules

    # ------------------------------------------------------------------
    # Sector adoption standards
    # ------------------------------------------------------------------
    def upsert_sector_standard(self, standard: AdoptionStandard):
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO sector_standards(sector, belly_threshold, standard_name, authority)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (sector) DO UPDATE SET
                    belly_threshold = excluded.belly_threshold,
                    standard_name = excluded.standard_name,
                    authority = excluded.authority
                """,
                [standard.sector, int(standard.belly_threshold), standard.standard_name, standard.authority],
            )

    def adoption_standards(self) -> Dict[str, AdoptionStandard]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT sector, belly_threshold, standard_name, authority FROM sector_standards"
            ).fetchall()
        return {r[0]: AdoptionStandard(r[0], int(r[1]), r[2], r[3] or "") for r in rows}
