# drainage/config.py
"""Engine configuration.

Loads settings from environment variables (and a local .env file when
present) with defaults suitable for a single-machine install.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import DEFAULT_SECTOR

load_dotenv()


@dataclass
class StoreConfig:
    """DuckDB store and per-upload locking."""

    db_path: Path = Path("data_store/rules.duckdb")
    lock_dir: Path = Path("data_store/locks")
    lock_timeout: float = 30.0


@dataclass
class PatchingConfig:
    """Structural patch estimate settings."""

    unit_cost: Optional[float] = 350.0
    proximity_m: float = 1.0


@dataclass
class AppConfig:
    """Root configuration object."""

    default_sector: str = DEFAULT_SECTOR
    standards_dir: Optional[Path] = None
    log_level: str = "INFO"
    json_logs: bool = False

    store: StoreConfig = field(default_factory=StoreConfig)
    patching: PatchingConfig = field(default_factory=PatchingConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build configuration from DRAINAGE_* variables, LOG_LEVEL and JSON_LOGS."""
        standards_dir = os.getenv("DRAINAGE_STANDARDS_DIR")
        unit_cost = os.getenv("DRAINAGE_PATCH_UNIT_COST", "350").strip()

        return cls(
            default_sector=os.getenv("DRAINAGE_DEFAULT_SECTOR", DEFAULT_SECTOR).strip().lower(),
            standards_dir=Path(standards_dir) if standards_dir else None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
            store=StoreConfig(
                db_path=Path(os.getenv("DRAINAGE_DB_PATH", "data_store/rules.duckdb")),
                lock_dir=Path(os.getenv("DRAINAGE_LOCK_DIR", "data_store/locks")),
                lock_timeout=float(os.getenv("DRAINAGE_LOCK_TIMEOUT", "30")),
            ),
            patching=PatchingConfig(
                # empty value disables patch costing
                unit_cost=float(unit_cost) if unit_cost else None,
                proximity_m=float(os.getenv("DRAINAGE_PATCH_PROXIMITY_M", "1.0")),
            ),
        )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    global _config
    _config = None
