# drainage/keywords.py
"""
Keyword vocabulary shared by the parser, the classifier and the splitter.

Business Rules:
1. Observation codes describe the pipe run, never a defect (LL, WL, JN, ...)
2. Defect-indicating codes always veto the observation-only route
3. Keyword inference is an ordered cascade: first matching rule wins
"""
from __future__ import annotations
import regex as re
from typing import List, Optional, Tuple


# ============================================================================
# CODE SETS
# ============================================================================

OBSERVATION_CODES = ("LL", "REM", "MCPP", "REST", "BEND", "WL", "RE", "BRF", "JN", "LR")

DEFECT_INDICATOR_CODES = (
    "DER", "FC", "CR", "FL", "RI", "JDL", "JDS", "DES", "DEC", "OB", "DEF", "OJL", "OJM",
)

# Codes are matched case-sensitively: "re" in running text is not RE
_OBSERVATION_CODE_RE = re.compile(r"\b(?:" + "|".join(OBSERVATION_CODES) + r")\b")
_DEFECT_CODE_RE = re.compile(r"\b(?:" + "|".join(DEFECT_INDICATOR_CODES) + r")\b")

# Free-text phrases recorded during a survey that are not defects
OBSERVATION_KEYWORDS = [
    r'\bwater\s+level\b',
    r'\bline\s+deviates\b',
    r'\bgeneral\s+remarks?\b',
    r'\bpipe\s+material\b',
    r'\brest\s+bend\b',
    r'\bmaterial\s+change\b',
    r'\bchange\s+of\s+material\b',
    r'\bmaterial\s+changes\b',
    r'\bno\s+coding\s+present\b',
]

# Wording that means a real defect even without a code
DEFECT_KEYWORDS = [
    r'\bcrack(s|ed|ing)?\b',
    r'\bfractur(e|ed|es)\b',
    r'\bdeform(ed|ity|ation)?\b',
    r'\bdisplace(d|ment)?\b',
    r'\bdeposits?\b',
    r'\broots?\b',
    r'\bblockage\b',
    r'\bobstruction\b',
    r'\binfiltration\b',
]

_OBSERVATION_KW_RE = re.compile("|".join(OBSERVATION_KEYWORDS), re.IGNORECASE)
_DEFECT_KW_RE = re.compile("|".join(DEFECT_KEYWORDS), re.IGNORECASE)

NO_CODING_RE = re.compile(r'\bno\s+coding\s+present\b', re.IGNORECASE)


def observation_codes_in(text: str) -> List[str]:
    """Observation codes present in text, in order of first appearance."""
    seen: List[str] = []
    for m in _OBSERVATION_CODE_RE.finditer(text or ""):
        if m.group(0) not in seen:
            seen.append(m.group(0))
    return seen


def has_observation_signal(text: str) -> bool:
    return bool(_OBSERVATION_CODE_RE.search(text or "") or _OBSERVATION_KW_RE.search(text or ""))


def has_defect_indicator(text: str) -> bool:
    """True when a defect-indicating code or defect wording is present."""
    return bool(_DEFECT_CODE_RE.search(text or "") or _DEFECT_KW_RE.search(text or ""))


# ============================================================================
# KEYWORD → CODE CASCADE
# ============================================================================
# Each rule: (code, patterns that must all match). Evaluated top to bottom.

KEYWORD_RULES: List[Tuple[str, List[str]]] = [
    ("FC", [r'fractur', r'circumferential']),
    ("FL", [r'fractur', r'longitudinal']),
    ("FC", [r'fractur']),
    ("CR", [r'crack']),
    ("RI", [r'\broots?\b']),
    ("JDL", [r'joint', r'displace', r'\b(large|major)\b']),
    ("JDM", [r'joint', r'displace', r'\bmedium\b']),
    ("JDS", [r'joint', r'displace']),
    ("OJL", [r'joint', r'\bopen\b', r'\b(large|major|longitudinal)\b']),
    ("OJM", [r'joint', r'\bopen\b']),
    ("DEC", [r'(deposit|silt|debris)', r'concrete']),
    ("DER", [r'(deposit|silt|debris)', r'\b(coarse|heavy)\b']),
    ("DES", [r'(deposit|silt|debris)']),
    ("WL", [r'(water\s+level|standing\s+water)']),
    ("OBI", [r'obstacle', r'(other\s+obstacles?|intruding)']),
    ("OB", [r'(obstacle|obstruction)']),
    ("DEF", [r'deform']),
    ("S/A", [r'(service\s+connection|\bs/a\b)']),
]

_COMPILED_RULES = [
    (code, [re.compile(p, re.IGNORECASE) for p in req])
    for code, req in KEYWORD_RULES
]


def infer_code(text: str) -> Optional[str]:
    """
    Infer an MSCC5 code from descriptive wording.

    Args:
        text: Observation or defect description

    Returns:
        The code of the first matching rule, or None
    """
    if not text:
        return None
    for code, required in _COMPILED_RULES:
        if all(p.search(text) for p in required):
            return code
    return None
