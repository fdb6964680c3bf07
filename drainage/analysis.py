# drainage/analysis.py
"""
Pattern analyses over raw observation text.

- Belly condition: rise-then-fall in recorded water levels
- Nearby connections: open joints within reach of a junction/connection
- Service connections: which contractor-confirmation template applies
"""
from __future__ import annotations
import regex as re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .constants import NEARBY_CONNECTION_M
from .standards import StandardsProvider


# ============================================================================
# BELLY CONDITION
# ============================================================================
# "WL 5.0m 30%" / "WL 5.00m water level 30% of vertical dimension"
_WL_READING_RE = re.compile(
    r"\bWL\s+(?P<meter>\d+(?:\.\d+)?)\s*m\b(?P<between>(?:(?!\bWL\b)[^%])*?)(?P<pct>\d{1,3})\s*%"
)


@dataclass
class BellyAnalysis:
    has_belly: bool
    max_water_level: int
    adoption_fail: bool
    threshold: int
    standard_name: str
    readings: List[Tuple[float, int]] = field(default_factory=list)
    observation: str = ""
    recommendation: str = ""


def water_level_readings(text: str) -> List[Tuple[float, int]]:
    """(meterage, percent) tuples for every WL reading, ordered by meterage."""
    readings = [
        (float(m.group("meter")), int(m.group("pct")))
        for m in _WL_READING_RE.finditer(text or "")
    ]
    # stable sort keeps text order for equal meterages
    return sorted(readings, key=lambda r: r[0])


def analyze_belly_condition(text: str, sector: str, provider: StandardsProvider) -> BellyAnalysis:
    """
    Detect a belly (gradient dip) from water-level readings.

    A belly exists where three consecutive readings, ordered by meterage,
    rise then fall. At least three readings are needed to consider one.
    Adoption fails when the highest reading is strictly above the sector's
    belly threshold.

    Args:
        text: Raw observation text
        sector: Sector name used to pick the adoption standard
        provider: Standards provider

    Returns:
        BellyAnalysis
    """
    standard = provider.adoption_standard(sector)
    readings = water_level_readings(text)
    threshold = standard.belly_threshold

    if len(readings) < 3:
        return BellyAnalysis(
            has_belly=False,
            max_water_level=max((p for _, p in readings), default=0),
            adoption_fail=False,
            threshold=threshold,
            standard_name=standard.standard_name,
            readings=readings,
        )

    pcts = [p for _, p in readings]
    max_wl = max(pcts)
    peaks = [i + 1 for i in range(len(pcts) - 2) if pcts[i] < pcts[i + 1] > pcts[i + 2]]
    has_belly = bool(peaks)
    adoption_fail = max_wl > threshold

    if has_belly:
        peak = max(peaks, key=lambda i: pcts[i])
        observation = (
            f"Belly condition detected: water level rises to {max_wl}% at "
            f"{readings[peak][0]:.2f}m then falls across {len(readings)} readings"
        )
        if adoption_fail:
            recommendation = (
                f"Excavate and re-lay the affected length to correct the belly; maximum water level "
                f"{max_wl}% exceeds the {threshold}% limit under {standard.standard_name}"
            )
        else:
            recommendation = (
                f"Monitor water levels; belly within the {threshold}% limit under {standard.standard_name}"
            )
    else:
        observation = f"No belly pattern across {len(readings)} water level readings (max {max_wl}%)"
        recommendation = ""

    return BellyAnalysis(
        has_belly=has_belly,
        max_water_level=max_wl,
        adoption_fail=adoption_fail,
        threshold=threshold,
        standard_name=standard.standard_name,
        readings=readings,
        observation=observation,
        recommendation=recommendation,
    )


# ============================================================================
# NEARBY CONNECTIONS
# ============================================================================
_OJM_RE = re.compile(r"\bOJM\s+(\d+(?:\.\d+)?)\s*m\b|(\d+(?:\.\d+)?)\s*m\b\s+OJM\b")
_CONNECTION_RE = re.compile(r"\b(JN|CN)\s+(\d+(?:\.\d+)?)\s*m\b|(\d+(?:\.\d+)?)\s*m\b\s+(JN|CN)\b")


def _locations(pattern: re.Pattern, text: str) -> List[Tuple[str, float]]:
    found = []
    for m in pattern.finditer(text or ""):
        groups = [g for g in m.groups() if g]
        code = next((g for g in groups if g.isalpha()), "OJM")
        value = next(g for g in groups if not g.isalpha())
        found.append((code, float(value)))
    return found


def analyze_nearby_connections(text: str, max_distance: float = NEARBY_CONNECTION_M) -> List[str]:
    """
    Recommendations to reopen junctions/connections that sit near an open joint.

    Every OJM location is compared with every JN/CN location; pairs within
    `max_distance` metres produce one recommendation each, in text order.
    """
    joints = _locations(_OJM_RE, text)
    connections = _locations(_CONNECTION_RE, text)
    recs: List[str] = []
    for _, joint_m in joints:
        for code, conn_m in connections:
            distance = abs(joint_m - conn_m)
            # rounding guards against float noise at exactly the limit
            if round(distance, 3) <= max_distance:
                kind = "junction" if code == "JN" else "connection"
                recs.append(
                    f"Reopen {kind} at {conn_m:.2f}m after patch repair of open joint at "
                    f"{joint_m:.2f}m ({distance:.2f}m apart)"
                )
    return recs


# ============================================================================
# SERVICE CONNECTIONS
# ============================================================================
SERVICE_CONNECTION_TEMPLATES = {
    "not_connected": (
        "Contractor to confirm whether the service connection is live; connection recorded as not "
        "connected. Confirm status and seal redundant connection if abandoned"
    ),
    "bung": (
        "Contractor to confirm the bung in line at the service connection has been removed and the "
        "connection is running freely"
    ),
    "blocked": (
        "Contractor to confirm the service connection is clear; complete blockage / full water level "
        "recorded. Jet connection and resurvey"
    ),
}
GENERIC_CONNECTION_RECOMMENDATION = "Verify service connection status with contractor"

_SA_RE = re.compile(r"\bS/A\b")
_SERVICE_CONNECTION_RULES = [
    ("not_connected", re.compile(r"\bno(t)?\s+connected\b", re.IGNORECASE)),
    ("bung", re.compile(r"\bbung\s+in\s+line\b", re.IGNORECASE)),
    ("blocked", re.compile(r"\bWL\s+100\s*%|\bcomplete\s+blockage\b", re.IGNORECASE)),
]


def has_service_connection(text: str) -> bool:
    return bool(_SA_RE.search(text or "") or re.search(r"service\s+connection", text or "", re.IGNORECASE))


def analyze_service_connection(text: str) -> Optional[str]:
    """
    Pick the contractor-confirmation recommendation for a service connection.

    Returns:
        A template recommendation when S/A is present with a recognised
        qualifier, the generic one when S/A has none, None without S/A.
    """
    if not has_service_connection(text):
        return None
    if _SA_RE.search(text or ""):
        for key, pattern in _SERVICE_CONNECTION_RULES:
            if pattern.search(text):
                return SERVICE_CONNECTION_TEMPLATES[key]
    return GENERIC_CONNECTION_RECOMMENDATION
