# drainage/errors.py
"""Domain exceptions.

Classification itself never raises on bad input text; these cover the
persistence boundary and the rules-run lifecycle.
"""
from __future__ import annotations
from typing import Optional


class DrainageError(Exception):
    """Base class for all drainage engine errors."""


class StandardsLoadError(DrainageError):
    """A standards JSON file could not be read or has the wrong shape."""


class RunNotFoundError(DrainageError):
    def __init__(self, run_id: int):
        super().__init__(f"Rules run {run_id} does not exist")
        self.run_id = run_id


class RunFinalizedError(DrainageError):
    """Raised on any attempt to write to, or re-finalize, a finished run."""

    def __init__(self, run_id: int):
        super().__init__(f"Rules run {run_id} is finished and immutable")
        self.run_id = run_id


class RunCancelledError(DrainageError):
    """Raised inside a run when its cancel event is set."""


class RulesRunFailedError(DrainageError):
    """Dashboard data was requested but the only available run failed."""

    def __init__(self, run_id: int, error_text: Optional[str] = None):
        msg = f"Rules run {run_id} failed"
        if error_text:
            msg += f": {error_text.strip().splitlines()[-1]}"
        super().__init__(msg)
        self.run_id = run_id
        self.error_text = error_text


class LockTimeoutError(DrainageError, TimeoutError):
    """Per-upload lock could not be acquired in time."""
