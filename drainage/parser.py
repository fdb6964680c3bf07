# drainage/parser.py
"""
Observation parser: free text → (code, meterage, percentage, description).

Recognised shapes, tried in order on each sentence fragment:
1. CODE multi-meterage-list: description   "DER 13.07m, 16.93m, 17.73m: Settled deposits"
2. CODE METERAGE: description              "FC 4.2m circumferential fracture"
   (shapes 1-2 also take a known code typed in lower case, "fc 4.2m")
3. METERAGE CODE: description              "4.20m FC Fracture"
4. CODE description at METERAGE            "DES Settled deposits, fine, 10% at 21.75m"
5. loose  meterage code description pct?   "... at 5.0m WL water level 30%"
6. METERAGE description (no code)          "12.5m longitudinal fracture" → code inferred

Output order follows the text; duplicate (meterage, code) pairs are dropped.
"""
from __future__ import annotations
import regex as re
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from .cleaning import normalize_text
from .keywords import OBSERVATION_CODES, infer_code
from .standards import MSCC5_DEFECTS


@dataclass(frozen=True)
class ParsedObservation:
    """One defect location pulled out of a raw observation string."""
    meterage: str      # "X.XXm"
    defect_code: str
    description: str
    percentage: str    # "5", "10-20" or ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


# ============================================================================
# PATTERNS
# ============================================================================
_CODE = r"(?P<code>[A-Z]{1,4}(?:/[A-Z])?)"
# leading codes may be typed in lower case; only known codes are accepted then
_LEADING_CODE = r"(?P<code>(?i:[A-Z]{1,4}(?:/[A-Z])?))"
_METER_VALUE = r"\d+(?:\.\d+)?\s*m\b"
_METER = r"(?P<meter>\d+(?:\.\d+)?)\s*m\b"
_METER_LIST = rf"(?P<meters>{_METER_VALUE}(?:\s*,\s*{_METER_VALUE})+)"
_DESC = r"\s*[:\-–]?\s*(?P<desc>.*)$"

_MULTI_METER_RE = re.compile(rf"^\s*{_LEADING_CODE}\s+{_METER_LIST}{_DESC}")
_CODE_METER_RE = re.compile(rf"^\s*{_LEADING_CODE}\s+{_METER}(?!\s*,\s*\d){_DESC}")
_METER_CODE_RE = re.compile(rf"^\s*{_METER}\s+{_CODE}\b{_DESC}")
_CODE_DESC_AT_RE = re.compile(rf"^\s*(?P<code>[A-Z]{{2,4}}(?:/[A-Z])?)\s+(?P<desc>[A-Za-z].*?)\s+at\s+{_METER}\s*$")
_LOOSE_RE = re.compile(
    rf"{_METER}\s+{_CODE}\b\s*(?P<desc>.*?)(?:\s*(?P<pct>\d{{1,3}}(?:\s*-\s*\d{{1,3}})?)\s*%)?\s*$"
)
_METER_DESC_RE = re.compile(rf"^\s*{_METER}\s*[:\-–]?\s*(?P<desc>[A-Za-z].*)$")

_METER_IN_LIST_RE = re.compile(r"(\d+(?:\.\d+)?)\s*m\b")
_PCT_RE = re.compile(r"(?<![\d.])(\d{1,3})(?:\s*-\s*(\d{1,3}))?\s*%")

# Sentence stops, line breaks, and ", CODE 12.3m" continuations
_SEGMENT_SPLIT_RE = re.compile(r"(?:(?<!\d)[.;]\s+|(?<=\d[.;])\s+(?=[A-Z])|\n+|,\s*(?=[A-Z]{1,4}(?:/[A-Z])?\s+\d))")


# ============================================================================
# HELPERS
# ============================================================================
def normalize_meterage(value: str) -> str:
    """'13.1' / '13.10m' / '13 m' → '13.10m'."""
    num = re.sub(r"[^\d.]", "", str(value))
    return f"{float(num):.2f}m"


def extract_percentage(text: str) -> str:
    """
    Find a bare NN% or NN-MM% token.

    Returns:
        "NN", "NN-MM" or "" when absent
    """
    m = _PCT_RE.search(text or "")
    if not m:
        return ""
    if m.group(2):
        return f"{int(m.group(1))}-{int(m.group(2))}"
    return str(int(m.group(1)))


def percentage_value(pct: str) -> Optional[int]:
    """Upper bound of a stored percentage string ("10-20" → 20)."""
    if not pct:
        return None
    nums = re.findall(r"\d+", pct)
    return int(nums[-1]) if nums else None


def split_segments(text: str) -> List[str]:
    """Split raw text into sentence fragments, keeping order."""
    parts = _SEGMENT_SPLIT_RE.split(normalize_text(text))
    return [p.strip(" .;,") for p in parts if p and p.strip(" .;,")]


_KNOWN_CODES = frozenset(MSCC5_DEFECTS) | frozenset(OBSERVATION_CODES)


def _canonical_code(token: str) -> Optional[str]:
    """Upper-case code for a leading token; None for a lower-case word that is not a known code."""
    if token.isupper():
        return token
    code = token.upper()
    return code if code in _KNOWN_CODES else None


def _clean_desc(desc: str) -> str:
    return (desc or "").strip(" :-–.,;")


def _match_segment(segment: str) -> List[Tuple[str, str, str, str]]:
    """Return (meterage, code, description, percentage) tuples for one fragment."""
    m = _MULTI_METER_RE.match(segment)
    code = _canonical_code(m.group("code")) if m else None
    if code:
        desc = _clean_desc(m.group("desc"))
        pct = extract_percentage(desc)
        return [(v, code, desc, pct) for v in _METER_IN_LIST_RE.findall(m.group("meters"))]

    m = _CODE_METER_RE.match(segment)
    code = _canonical_code(m.group("code")) if m else None
    if code:
        desc = _clean_desc(m.group("desc"))
        return [(m.group("meter"), code, desc, extract_percentage(desc))]

    m = _METER_CODE_RE.match(segment)
    if m:
        desc = _clean_desc(m.group("desc"))
        return [(m.group("meter"), m.group("code"), desc, extract_percentage(desc))]

    m = _CODE_DESC_AT_RE.match(segment)
    if m:
        desc = _clean_desc(m.group("desc"))
        return [(m.group("meter"), m.group("code"), desc, extract_percentage(desc))]

    m = _LOOSE_RE.search(segment)
    if m:
        desc = _clean_desc(m.group("desc"))
        pct = m.group("pct")
        pct = re.sub(r"\s+", "", pct) if pct else extract_percentage(desc)
        return [(m.group("meter"), m.group("code"), desc, pct)]

    m = _METER_DESC_RE.match(segment)
    if m:
        desc = _clean_desc(m.group("desc"))
        code = infer_code(desc)
        if code:
            return [(m.group("meter"), code, desc, extract_percentage(desc))]

    return []


# ============================================================================
# PUBLIC API
# ============================================================================
def parse(raw_text: str) -> List[ParsedObservation]:
    """
    Parse a raw observation string.

    Args:
        raw_text: Free-text observation(s) for one section

    Returns:
        ParsedObservation list in text order; empty when nothing matched
    """
    results: List[ParsedObservation] = []
    seen = set()
    for segment in split_segments(raw_text or ""):
        for meter, code, desc, pct in _match_segment(segment):
            meterage = normalize_meterage(meter)
            key = (meterage, code)
            if key in seen:
                continue
            seen.add(key)
            results.append(ParsedObservation(
                meterage=meterage,
                defect_code=code,
                description=desc,
                percentage=pct,
            ))
    return results


def parsed_codes(raw_text: str) -> List[str]:
    """Distinct codes from parse(), in order of first appearance."""
    codes: List[str] = []
    for obs in parse(raw_text):
        if obs.defect_code not in codes:
            codes.append(obs.defect_code)
    return codes
