# drainage/composer.py
"""
Recommendation & cost composer.

Merges a classification (code, type, grade, sector) with the Drain Repair
Book, the Sewer Cleaning Manual, the condition-trigger table and the cost
bands. Construction-sector overrides replace the generic repair text for a
fixed set of codes and apply only in that sector.
"""
from __future__ import annotations
import regex as re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .analysis import analyze_nearby_connections
from .constants import DEFAULT_COST_BANDS, STRUCTURAL, UNKNOWN_COST
from .standards import StandardsProvider


CONSTRUCTION_OVERRIDES: Dict[str, str] = {
    "OJM": (
        "Install patch repair over the open joint and air test the length to BS EN 1610:2015; "
        "reopen any junction or connection covered by the patch"
    ),
    "OJL": (
        "Excavate and re-make the open joint to line and level, then air test the length "
        "to BS EN 1610:2015"
    ),
    "JDM": (
        "Install patch repair across the displaced joint; where displacement restricts the "
        "liner, trim the joint lip by robotic cutter before patching"
    ),
    "JDL": (
        "Excavate and re-lay the displaced joint to line and level; robotic realignment only "
        "where excavation is not possible"
    ),
    "OBI": (
        "Remove intruding obstacle by robotic cutter; where rebar is present cut each bar flush "
        "with the pipe wall in stages, recover arisings and CCTV resurvey"
    ),
    "DEC": (
        "Remove concrete deposit by directional water cutting with a rotary cutting nozzle, "
        "working from the downstream end; jet-vac arisings and CCTV verify"
    ),
}

_GRADE_PRIORITY = {0: "None", 1: "Low", 2: "Low", 3: "Medium", 4: "High", 5: "Urgent"}

_REPAIR_COUNT_RE = re.compile(r"(\d+)\s+(?:repairs?|patch(?:es)?)\b", re.IGNORECASE)
_METERAGE_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s*m\b")


@dataclass
class Composition:
    """Composer output attached to every classification."""
    recommendations: str
    estimated_cost: str
    recommendation_methods: List[str] = field(default_factory=list)
    recommendation_priority: str = "None"
    cleaning_methods: List[str] = field(default_factory=list)
    cleaning_frequency: str = ""
    trigger_actions: List[Dict[str, Any]] = field(default_factory=list)
    action_type: int = 0
    patch_count: int = 0
    patching_cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_cost(grade: int, cost_bands: Optional[Mapping[Any, str]] = None) -> str:
    """
    Cost band for a grade.

    User bands win entry by entry; a grade missing from them falls back to
    the default table. Grade 0 is always "£0"; grades outside 0-5 give
    "£TBC".
    """
    try:
        grade = int(grade)
    except (TypeError, ValueError):
        return UNKNOWN_COST
    if grade not in DEFAULT_COST_BANDS:
        return UNKNOWN_COST
    if cost_bands and grade > 0:
        # override maps may come from JSON with string keys
        override = cost_bands.get(grade) or cost_bands.get(str(grade))
        if override:
            return override
    return DEFAULT_COST_BANDS[grade]


def priority_for_grade(grade: int) -> str:
    return _GRADE_PRIORITY.get(max(0, min(int(grade), 5)), "None")


def count_patch_repairs(recommendations: str, defects_text: str, proximity_m: float = 1.0) -> int:
    """
    Number of patch repairs a structural section needs.

    An explicit count in the recommendation ("3 patches") wins. Otherwise
    meterages in the defect text are grouped: a reading more than
    `proximity_m` from the previous one starts a new patch. No meterage
    means one patch.
    """
    m = _REPAIR_COUNT_RE.search(recommendations or "")
    if m:
        return int(m.group(1))

    meterages = sorted(float(v) for v in _METERAGE_RE.findall(defects_text or ""))
    if not meterages:
        return 1

    groups = 0
    last = None
    for value in meterages:
        if last is None or value - last > proximity_m:
            groups += 1
        last = value
    return groups


class RecommendationComposer:
    """
    Compose recommendation text, method lists and cost for a classification.

    Args:
        provider: Standards provider
        patch_unit_cost: Cost per structural patch; None disables patch costing
        proximity_m: Meterage gap that separates two patches
    """

    def __init__(
        self,
        provider: StandardsProvider,
        patch_unit_cost: Optional[float] = None,
        proximity_m: float = 1.0,
    ):
        self.provider = provider
        self.patch_unit_cost = patch_unit_cost
        self.proximity_m = proximity_m

    def repair_methods(self, code: str, grade: int) -> tuple:
        entry = self.provider.repair_entry(code)
        if not entry:
            return [], priority_for_grade(grade)
        return list(entry.get("suggested_repairs") or []), entry.get("repair_priority") or priority_for_grade(grade)

    def cleaning_methods(self, code: str) -> tuple:
        entry = self.provider.cleaning_entry(code)
        if not entry:
            return [], ""
        return list(entry.get("recommended_methods") or []), entry.get("cleaning_frequency") or "As required"

    def compose(
        self,
        defect_code: str,
        defect_type: str,
        grade: int,
        sector: str,
        base_recommendation: str = "",
        text: str = "",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> Composition:
        """
        Build the Composition for one classification.

        Args:
            defect_code: Primary MSCC5 code of the result
            defect_type: structural | service
            grade: Final severity grade
            sector: Sector name
            base_recommendation: Recommendation chosen by the classifier
            text: Raw defect text (used for connection and patch analysis)
            cost_bands: Optional user cost bands keyed by grade

        Returns:
            Composition
        """
        sector = (sector or "").strip().lower()
        code = (defect_code or "").upper()

        methods, priority = self.repair_methods(code, grade)
        cleaning, frequency = self.cleaning_methods(code)

        recommendations = base_recommendation
        if grade > 0 and sector == "construction" and code in CONSTRUCTION_OVERRIDES:
            recommendations = CONSTRUCTION_OVERRIDES[code]
            if code == "OJM":
                extra = analyze_nearby_connections(text)
                if extra:
                    recommendations = "; ".join([recommendations] + extra)

        entry = self.provider.repair_entry(code) or self.provider.cleaning_entry(code)
        defect = self.provider.defect(code)
        if grade <= 0:
            action_type = 0
        elif entry:
            action_type = int(entry.get("action_type", 0))
        else:
            action_type = defect.action_type if defect else 0

        patch_count = 0
        patching_cost = None
        if defect_type == STRUCTURAL and grade > 0 and defect is not None and defect.type == STRUCTURAL:
            patch_count = count_patch_repairs(recommendations, text, self.proximity_m)
            if self.patch_unit_cost is not None:
                patching_cost = round(patch_count * self.patch_unit_cost, 2)

        return Composition(
            recommendations=recommendations,
            estimated_cost=estimate_cost(grade, cost_bands),
            recommendation_methods=methods,
            recommendation_priority=priority,
            cleaning_methods=cleaning,
            cleaning_frequency=frequency,
            trigger_actions=self.provider.trigger_actions_for(code, grade) if grade > 0 else [],
            action_type=action_type,
            patch_count=patch_count,
            patching_cost=patching_cost,
        )
