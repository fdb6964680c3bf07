# drainage/cleaning.py
"""
Text normalization for raw CCTV observation strings.

Raw observations arrive from database exports and PDF text extraction, so
they carry stray whitespace, non-breaking spaces, full-width characters and
duplicated sentence stops. Cleaning only touches layout; codes, meterages
and wording are preserved.
"""
from __future__ import annotations
import unicodedata
import regex as re
from typing import Iterable, List

from .constants import DEFAULT_OBSERVATION

_WS = re.compile(r"[ \t\u00a0\u2000-\u200b]+")
_MULTI_STOP = re.compile(r"\.{2,}(?!\d)")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([,;:])")
_TRAILING_STOP = re.compile(r"[\s.;]+$")


def normalize_text(text: str) -> str:
    """
    Normalize a single observation string:
    - NFKC unicode folding ("５％" → "5%")
    - collapse runs of spaces/tabs, keep newlines
    - squash repeated full stops
    """
    if text is None:
        return ""
    t = unicodedata.normalize("NFKC", str(text))
    t = t.replace("\r\n", "\n").replace("\r", "\n")
    t = _WS.sub(" ", t)
    t = _MULTI_STOP.sub(".", t)
    t = _SPACE_BEFORE_PUNCT.sub(r"\1", t)
    lines = [ln.strip() for ln in t.split("\n")]
    return "\n".join(ln for ln in lines if ln)


def join_observations(observations: Iterable[str]) -> str:
    """
    Join a section's raw observations into one defect text.

    Each observation is normalized and its trailing stop removed, then the
    pieces are joined with ". ". An empty list yields the default
    "no defect" observation so every section has classifiable text.
    """
    parts: List[str] = []
    for obs in observations or []:
        t = _TRAILING_STOP.sub("", normalize_text(obs))
        if t:
            parts.append(t)
    if not parts:
        return DEFAULT_OBSERVATION
    return ". ".join(parts)
