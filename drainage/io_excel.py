# drainage/io_excel.py
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import regex as re

from .mapping import MAP_IN2INTERNAL, ORDER_OUTCOLS, SECTION_FIELDS

_INTERNAL_REQUIRED = ["item_no", "observations"] + SECTION_FIELDS
_OBSERVATION_SPLIT = re.compile(r"\s*(?:\n|\|)\s*")


def _suffix(file) -> str:
    name = getattr(file, "name", file)
    return Path(str(name)).suffix.lower()


def load_sections_table(file) -> pd.DataFrame:
    """Read a section export (.xlsx/.xls or .csv) into internal column names."""
    if _suffix(file) == ".csv":
        df = pd.read_csv(file, dtype=str)
    else:
        df = pd.read_excel(file, dtype=str)

    df = df.rename(columns={k: v for k, v in MAP_IN2INTERNAL.items() if k in df.columns})
    for need in _INTERNAL_REQUIRED:
        if need not in df.columns:
            df[need] = None
    df = df[df["item_no"].notna()].reset_index(drop=True)
    return df


def _grade(value) -> Optional[int]:
    if value is None or pd.isna(value) or str(value).strip() == "":
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def sections_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Section dicts for RulesStore.add_sections.

    The observations cell holds one observation per line (or "|"
    separated); each is kept verbatim apart from outer whitespace.
    """
    sections = []
    for row in df.to_dict("records"):
        raw = row.get("observations")
        observations = [] if raw is None or pd.isna(raw) else [
            o for o in _OBSERVATION_SPLIT.split(str(raw).strip()) if o
        ]
        structural = _grade(row.get("secstat_structural"))
        service = _grade(row.get("secstat_service"))
        suffix = row.get("letter_suffix")
        sections.append({
            "item_no": str(row["item_no"]).strip(),
            "letter_suffix": None if suffix is None or pd.isna(suffix) else str(suffix).strip(),
            "raw_observations": observations,
            "secstat_grades": (
                {"structural": structural, "service": service}
                if structural is not None or service is not None else None
            ),
            **{f: (None if row.get(f) is None or pd.isna(row.get(f)) else row.get(f)) for f in SECTION_FIELDS},
        })
    return sections


def dashboard_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=ORDER_OUTCOLS)
    if "defect_codes" in df.columns:
        df["defect_codes"] = df["defect_codes"].apply(lambda c: ", ".join(c) if isinstance(c, list) else c)
    cols = [c for c in ORDER_OUTCOLS if c in df.columns]
    return df[cols]


def write_result(df: pd.DataFrame, path: str = "drainage_dashboard.xlsx") -> str:
    if Path(path).suffix.lower() == ".csv":
        df.to_csv(path, index=False)
    else:
        df.to_excel(path, index=False)
    return path
