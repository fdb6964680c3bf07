# drainage/progress_tracker.py
"""
Progress reporting for rules runs.

A run reports once per section. Three renderings share one state object:
- silent: subscribers only (library use, tests)
- console: a single refreshed status line on stderr (run_rules.py)
- file: JSON snapshot another process can poll while a run is in flight
"""
from __future__ import annotations
import json
import os
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO

import structlog

logger = structlog.get_logger(__name__)

RUN_STATES = ("idle", "running", "completed", "cancelled", "failed")


@dataclass
class ProgressState:
    """Snapshot of one rules run."""
    run_id: Optional[int] = None
    upload_id: Optional[int] = None
    total_sections: int = 0
    sections_done: int = 0
    observations: int = 0
    failed_sections: int = 0
    current_item: str = ""
    started_at: float = 0.0
    status: str = "idle"
    message: str = ""

    @property
    def percentage(self) -> float:
        if not self.total_sections:
            return 0.0
        return 100.0 * self.sections_done / self.total_sections

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.started_at if self.started_at else 0.0

    @property
    def eta_seconds(self) -> float:
        """Seconds left at the average per-section rate so far."""
        elapsed = self.elapsed_seconds
        if not self.sections_done or not elapsed:
            return 0.0
        per_section = elapsed / self.sections_done
        return max(self.total_sections - self.sections_done, 0) * per_section

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "cancelled", "failed")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            percentage=round(self.percentage, 1),
            elapsed_seconds=round(self.elapsed_seconds, 2),
            eta_seconds=round(self.eta_seconds, 2),
        )
        return data


# ============================================================================
# BASE TRACKER
# ============================================================================
class ProgressTracker:
    """
    Collects per-section progress of a rules run and fans it out to subscribers.

    Args:
        description: Label shown by renderings (e.g. "Upload 3")
    """

    def __init__(self, description: str = "Rules run"):
        self.description = description
        self.state = ProgressState()
        self._subscribers: List[Callable[[ProgressState], None]] = []

    def subscribe(self, callback: Callable[[ProgressState], None]):
        self._subscribers.append(callback)

    def start(self, total_sections: int, run_id: Optional[int] = None, upload_id: Optional[int] = None):
        self.state = ProgressState(
            run_id=run_id,
            upload_id=upload_id,
            total_sections=int(total_sections),
            started_at=time.time(),
            status="running",
        )
        self._publish()

    def section_done(self, item_label: str, observations: int = 0):
        self.state.sections_done += 1
        self.state.observations += observations
        self.state.current_item = item_label
        self._publish()

    def section_failed(self, item_label: str, message: str = ""):
        self.state.failed_sections += 1
        self.state.current_item = item_label
        self.state.message = message
        self._publish()

    def finish(self, status: str = "completed", message: str = ""):
        if status not in RUN_STATES[2:]:
            raise ValueError(f"Invalid final progress status: {status}")
        self.state.status = status
        if message:
            self.state.message = message
        self._publish()

    def _publish(self):
        for callback in self._subscribers:
            try:
                callback(self.state)
            except Exception:
                logger.warning("progress.subscriber_failed", subscriber=repr(callback), exc_info=True)
        self.render(self.state)

    def render(self, state: ProgressState):
        """Hook for subclasses; the silent tracker renders nothing."""


# ============================================================================
# CONSOLE
# ============================================================================
class ConsoleProgressTracker(ProgressTracker):
    """Single status line, redrawn at most every `min_interval` seconds while running."""

    def __init__(self, description: str = "Rules run", stream: Optional[TextIO] = None, min_interval: float = 0.2):
        super().__init__(description)
        self.stream = stream or sys.stderr
        self.min_interval = min_interval
        self._last_draw = 0.0

    def render(self, state: ProgressState):
        now = time.time()
        if state.status == "running" and now - self._last_draw < self.min_interval:
            return
        self._last_draw = now

        run = f" run {state.run_id}" if state.run_id is not None else ""
        line = (
            f"\r{self.description}{run}: {state.sections_done}/{state.total_sections} sections "
            f"({state.percentage:.0f}%), {state.observations} observations"
        )
        if state.failed_sections:
            line += f", {state.failed_sections} failed"
        if state.status == "running":
            line += f", ~{state.eta_seconds:.0f}s left"
            if state.current_item:
                line += f" [{state.current_item}]"
        else:
            line += f" - {state.status}"
            if state.message and state.status != "completed":
                line += f": {state.message.strip().splitlines()[-1][:60]}"
        self.stream.write(line)
        if state.finished:
            self.stream.write("\n")
        self.stream.flush()


# ============================================================================
# FILE (polled by another process)
# ============================================================================
class FileProgressTracker(ProgressTracker):
    """Writes each snapshot to JSON; readers never see a half-written file."""

    def __init__(self, description: str = "Rules run", output_file: str = "data_store/rules_progress.json"):
        super().__init__(description)
        self.output_file = Path(output_file)
        self.output_file.parent.mkdir(parents=True, exist_ok=True)

    def render(self, state: ProgressState):
        payload = {
            "description": self.description,
            "updated_at": datetime.now().isoformat(timespec="seconds"),
            **state.to_dict(),
        }
        tmp = self.output_file.with_suffix(self.output_file.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, self.output_file)
        except OSError:
            logger.warning("progress.write_failed", path=str(self.output_file), exc_info=True)


def read_progress_file(filepath: str = "data_store/rules_progress.json") -> Optional[Dict[str, Any]]:
    """Latest snapshot written by FileProgressTracker, or None when there is none."""
    try:
        return json.loads(Path(filepath).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def create_progress_tracker(
    mode: str = "silent",
    description: str = "Rules run",
    output_file: Optional[str] = None,
) -> ProgressTracker:
    """
    Tracker for a display mode.

    Args:
        mode: 'console', 'file' or 'silent'
        description: Label for the run
        output_file: JSON path for 'file' mode

    Returns:
        ProgressTracker instance
    """
    if mode == "console":
        return ConsoleProgressTracker(description)
    if mode == "file":
        return FileProgressTracker(description, output_file or "data_store/rules_progress.json")
    if mode != "silent":
        raise ValueError(f"Unknown progress mode: {mode}")
    return ProgressTracker(description)
