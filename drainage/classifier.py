# drainage/classifier.py
"""
MSCC5 Defect Classifier

Decision order (first matching rule wins, no fall-through):
1. Hard-locked observation categories (construction / miscellaneous features) → zero grade
2. Explicit no-defect phrases → zero grade
3. Observation-only text → no coding / high water level / belly / zero grade
4. Parsed defect codes → highest graded entry
5. Keyword cascade → single inferred code
6. Nothing matched → zero grade

Grades are adjusted per entry by recorded percentage, escalated for the
adoption sector, then checked against OS19x for adoptability.
"""
from __future__ import annotations
import regex as re
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Union

import structlog

from .analysis import BellyAnalysis, analyze_belly_condition, analyze_service_connection, water_level_readings
from .cleaning import normalize_text
from .composer import RecommendationComposer
from .constants import (
    ADOPTABLE_CONDITIONAL,
    ADOPTABLE_NO,
    ADOPTABLE_YES,
    NO_DEFECT_CODE,
    NO_DEFECT_RISK,
    NO_DEFECT_TEXT,
    SERVICE,
    STRUCTURAL,
)
from .keywords import NO_CODING_RE, has_defect_indicator, has_observation_signal, infer_code
from .parser import ParsedObservation, extract_percentage, parse, percentage_value
from .standards import BANNED_CODE_NOTE, StandardsProvider, load_standards

logger = structlog.get_logger(__name__)


# ============================================================================
# RESULT
# ============================================================================
@dataclass
class ClassificationResult:
    """Classification of one section (or split sub-section)."""
    defect_code: str
    defect_description: str
    severity_grade: int
    defect_type: str
    recommendations: str
    risk_assessment: str
    adoptable: str  # Yes | No | Conditional
    estimated_cost: str
    srm_grading: Dict[str, Any]
    recommendation_methods: List[str] = field(default_factory=list)
    recommendation_priority: str = "None"
    cleaning_methods: List[str] = field(default_factory=list)
    cleaning_frequency: str = ""
    adoption_notes: str = ""
    defect_codes: List[str] = field(default_factory=list)
    observations: List[ParsedObservation] = field(default_factory=list)
    trigger_actions: List[Dict[str, Any]] = field(default_factory=list)
    action_type: int = 0
    patch_count: int = 0
    patching_cost: Optional[float] = None
    matched_rule: str = ""
    belly: Optional[BellyAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# GRADE / ADOPTABILITY RULES
# ============================================================================
_ADOPTABLE_RANK = {ADOPTABLE_YES: 0, ADOPTABLE_CONDITIONAL: 1, ADOPTABLE_NO: 2}


def adjust_grade(base_grade: int, percentage: Union[str, int, None]) -> int:
    """
    Adjust a base grade by recorded percentage.

    ≥50% → +2 (max 5), ≥30% → +1 (max 5), ≥10% → unchanged, <10% → -1 (min 1).
    No percentage leaves the grade unchanged.
    """
    value = percentage_value(percentage) if isinstance(percentage, str) else percentage
    if value is None:
        return base_grade
    if value >= 50:
        return min(base_grade + 2, 5)
    if value >= 30:
        return min(base_grade + 1, 5)
    if value >= 10:
        return base_grade
    return max(base_grade - 1, 1)


def escalate_for_sector(grade: int, defect_type: str, sector: str) -> int:
    """Adoption sector puts a grade floor of 3 under structural defects."""
    if sector == "adoption" and defect_type == STRUCTURAL:
        return max(grade, 3)
    return grade


def determine_adoptable(grade: int, defect_type: str, sector: str) -> str:
    if grade >= 4:
        return ADOPTABLE_NO
    if grade == 3 and (sector == "adoption" or defect_type == STRUCTURAL):
        return ADOPTABLE_CONDITIONAL
    return ADOPTABLE_YES


def stricter(a: str, b: str) -> str:
    return a if _ADOPTABLE_RANK[a] >= _ADOPTABLE_RANK[b] else b


# ============================================================================
# CLASSIFIER
# ============================================================================
class _Context:
    """Per-call state shared by rule predicates and builders."""

    def __init__(self, text: str, sector: str, cost_bands: Optional[Mapping[Any, str]]):
        self.text = text
        self.sector = sector
        self.cost_bands = cost_bands
        self._parsed: Optional[List[ParsedObservation]] = None

    @property
    def parsed(self) -> List[ParsedObservation]:
        if self._parsed is None:
            self._parsed = parse(self.text)
        return self._parsed


class Rule(NamedTuple):
    name: str
    predicate: Callable[[_Context], bool]
    build: Callable[[_Context], ClassificationResult]


_HARD_LOCKED_RE = re.compile(r"construction\s+features|miscellaneous\s+features", re.IGNORECASE)
_NO_DEFECT_RE = re.compile(r"no\s+action\s+required|acceptable\s+condition", re.IGNORECASE)
_HIGH_WATER_LEVEL = 50


class DefectClassifier:
    """
    Classify raw observation text into an MSCC5 result.

    Stateless apart from the injected read-only standards, so one instance
    can serve any number of threads.

    Args:
        provider: Standards provider (defaults to the in-code tables)
        composer: Recommendation composer (defaults to one over `provider`)
    """

    def __init__(
        self,
        provider: Optional[StandardsProvider] = None,
        composer: Optional[RecommendationComposer] = None,
    ):
        self.provider = provider or load_standards()
        self.composer = composer or RecommendationComposer(self.provider)
        self.rules: List[Rule] = [
            Rule("hard_locked_observation", lambda c: bool(_HARD_LOCKED_RE.search(c.text)), self._zero_builder("hard_locked_observation")),
            Rule("no_defect_phrase", lambda c: bool(_NO_DEFECT_RE.search(c.text)), self._zero_builder("no_defect_phrase")),
            Rule("observation_only", self._is_observation_only, self._from_observation_only),
            Rule("parsed_defects", lambda c: len(c.parsed) > 0, self._from_parsed),
            Rule("keyword_match", lambda c: infer_code(c.text) is not None, self._from_keyword),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def classify(
        self,
        defect_text: str,
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> ClassificationResult:
        """
        Classify one section's defect text.

        Args:
            defect_text: Raw observation text
            sector: utilities | adoption | highways | insurance | construction | domestic
            cost_bands: Optional user cost bands keyed by grade

        Returns:
            ClassificationResult; unparseable text yields the zero-grade result
        """
        ctx = _Context(normalize_text(defect_text or ""), (sector or "").strip().lower(), cost_bands)
        for rule in self.rules:
            if rule.predicate(ctx):
                return rule.build(ctx)
        return self.zero_result(ctx.sector, matched_rule="no_match")

    def regrade(
        self,
        result: ClassificationResult,
        grade: int,
        sector: str,
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> ClassificationResult:
        """Replace a result's grade (e.g. from source SECSTAT) and recompute what depends on it."""
        sector = (sector or "").strip().lower()
        grade = int(grade)
        if grade <= 0:
            zero = self.zero_result(sector, matched_rule=result.matched_rule)
            return replace(zero, defect_codes=result.defect_codes, observations=result.observations)
        adoptable, notes = self.apply_os19x(
            determine_adoptable(grade, result.defect_type, sector),
            grade, result.defect_type, result.defect_codes, sector,
        )
        composition = self.composer.compose(
            result.defect_code, result.defect_type, grade, sector,
            base_recommendation=result.recommendations,
            cost_bands=cost_bands,
        )
        return replace(
            result,
            severity_grade=grade,
            adoptable=adoptable,
            adoption_notes=notes,
            estimated_cost=composition.estimated_cost,
            srm_grading=self.provider.srm_grading(result.defect_type, grade),
            recommendation_priority=composition.recommendation_priority,
            trigger_actions=composition.trigger_actions,
        )

    def apply_os19x(self, adoptable: str, grade: int, defect_type: str, codes: List[str], sector: str):
        """
        OS19x adoption override; only the adoption sector is assessed.

        Returns:
            (adoptable, adoption_notes); never less strict than `adoptable`
        """
        if sector != "adoption":
            return adoptable, "Not applicable for this sector"
        banned = set(self.provider.banned_codes)
        if any((c or "").upper() in banned for c in codes):
            return ADOPTABLE_NO, BANNED_CODE_NOTE
        threshold = self.provider.os19x_threshold(defect_type)
        if grade > threshold["max_grade"]:
            override = ADOPTABLE_NO if defect_type == STRUCTURAL else ADOPTABLE_CONDITIONAL
            return stricter(adoptable, override), threshold["description"]
        return adoptable, "Meets adoption standards"

    def zero_result(self, sector: str = "", matched_rule: str = "") -> ClassificationResult:
        """Canonical 'no action required' result."""
        return ClassificationResult(
            defect_code=NO_DEFECT_CODE,
            defect_description=NO_DEFECT_TEXT,
            severity_grade=0,
            defect_type=SERVICE,
            recommendations=NO_DEFECT_TEXT,
            risk_assessment=NO_DEFECT_RISK,
            adoptable=ADOPTABLE_YES,
            estimated_cost="£0",
            srm_grading=self.provider.srm_grading(SERVICE, 0),
            adoption_notes="Meets adoption standards" if sector == "adoption" else "Not applicable for this sector",
            matched_rule=matched_rule,
        )

    # ------------------------------------------------------------------
    # Rule builders
    # ------------------------------------------------------------------
    def _zero_builder(self, name: str) -> Callable[[_Context], ClassificationResult]:
        return lambda ctx: self.zero_result(ctx.sector, matched_rule=name)

    def _build(
        self,
        ctx: _Context,
        rule: str,
        code: str,
        description: str,
        grade: int,
        defect_type: str,
        recommendations: str,
        risk: str,
        codes: List[str],
        adoptable: Optional[str] = None,
        adoption_notes: Optional[str] = None,
        belly: Optional[BellyAnalysis] = None,
    ) -> ClassificationResult:
        base = adoptable or determine_adoptable(grade, defect_type, ctx.sector)
        banned_candidates = codes + [o.defect_code for o in ctx.parsed if o.defect_code not in codes]
        final, notes = self.apply_os19x(base, grade, defect_type, banned_candidates, ctx.sector)
        if adoption_notes and notes in ("Not applicable for this sector", "Meets adoption standards"):
            notes = adoption_notes

        composition = self.composer.compose(
            code, defect_type, grade, ctx.sector,
            base_recommendation=recommendations,
            text=ctx.text,
            cost_bands=ctx.cost_bands,
        )
        return ClassificationResult(
            defect_code=code,
            defect_description=description,
            severity_grade=grade,
            defect_type=defect_type,
            recommendations=composition.recommendations,
            risk_assessment=risk,
            adoptable=final,
            estimated_cost=composition.estimated_cost,
            srm_grading=self.provider.srm_grading(defect_type, grade),
            recommendation_methods=composition.recommendation_methods,
            recommendation_priority=composition.recommendation_priority,
            cleaning_methods=composition.cleaning_methods,
            cleaning_frequency=composition.cleaning_frequency,
            adoption_notes=notes,
            defect_codes=codes,
            observations=list(ctx.parsed),
            trigger_actions=composition.trigger_actions,
            action_type=composition.action_type,
            patch_count=composition.patch_count,
            patching_cost=composition.patching_cost,
            matched_rule=rule,
            belly=belly,
        )

    # ---- step 3 ---------------------------------------------------------
    def _is_observation_only(self, ctx: _Context) -> bool:
        if has_defect_indicator(ctx.text) or analyze_service_connection(ctx.text):
            return False
        return has_observation_signal(ctx.text)

    def _from_observation_only(self, ctx: _Context) -> ClassificationResult:
        rule = "observation_only"
        wl_entry = self.provider.defect("WL")

        if NO_CODING_RE.search(ctx.text):
            return self._build(
                ctx, f"{rule}:no_coding", NO_DEFECT_CODE,
                "No coding present", 2, SERVICE,
                "No coding present: cleanse and resurvey the section to record its condition",
                "Condition unknown until the section is resurveyed",
                codes=[],
            )

        readings = water_level_readings(ctx.text)
        levels = [p for _, p in readings]
        if not levels and re.search(r"\bWL\b|water\s+level", ctx.text, re.IGNORECASE):
            value = percentage_value(extract_percentage(ctx.text))
            levels = [value] if value is not None else []
        if levels and max(levels) >= _HIGH_WATER_LEVEL:
            return self._build(
                ctx, f"{rule}:high_water_level", "WL",
                f"Water level above normal ({max(levels)}% of vertical dimension)", 3, SERVICE,
                "High water level indicates a possible downstream blockage: cleanse and survey downstream "
                "in line with the WRc Sewer Cleaning Manual",
                wl_entry.risk if wl_entry else "",
                codes=["WL"],
            )

        belly = analyze_belly_condition(ctx.text, ctx.sector, self.provider)
        if belly.has_belly and belly.adoption_fail:
            return self._build(
                ctx, f"{rule}:belly", "WL", belly.observation, 3, STRUCTURAL,
                belly.recommendation,
                "Gradient dip holds water and collects deposits",
                codes=["WL"],
                adoptable=ADOPTABLE_NO,
                adoption_notes=(
                    f"Belly fails {belly.standard_name}: maximum water level "
                    f"{belly.max_water_level}% exceeds {belly.threshold}%"
                ),
                belly=belly,
            )
        if belly.has_belly:
            return self._build(
                ctx, f"{rule}:belly", "WL", belly.observation, 1, SERVICE,
                belly.recommendation,
                "Minor gradient dip within tolerance",
                codes=["WL"],
                adoption_notes=f"Belly within {belly.threshold}% limit of {belly.standard_name}",
                belly=belly,
            )

        result = self.zero_result(ctx.sector, matched_rule=rule)
        result.belly = belly if belly.readings else None
        return result

    # ---- step 4 ---------------------------------------------------------
    def _from_parsed(self, ctx: _Context) -> ClassificationResult:
        scored = []
        for obs in ctx.parsed:
            entry = self.provider.defect(obs.defect_code)
            if entry is None:
                logger.debug("defect_code.unknown", code=obs.defect_code, meterage=obs.meterage)
                continue
            scored.append((obs, entry, adjust_grade(entry.default_grade, obs.percentage)))

        if not scored:
            return self.zero_result(ctx.sector, matched_rule="parsed_defects")

        top_obs, top_entry, top_grade = scored[0]
        for obs, entry, grade in scored[1:]:
            if grade > top_grade:
                top_obs, top_entry, top_grade = obs, entry, grade

        defect_type = top_entry.type
        grade = escalate_for_sector(top_grade, defect_type, ctx.sector)

        recommendations: List[str] = []
        codes: List[str] = []
        for obs, entry, _ in scored:
            rec = entry.recommended_action
            if entry.code == "S/A":
                rec = analyze_service_connection(ctx.text) or rec
            if rec not in recommendations:
                recommendations.append(rec)
            if entry.code not in codes:
                codes.append(entry.code)

        return self._build(
            ctx, "parsed_defects", top_entry.code,
            "; ".join(f"{entry.description} at {obs.meterage}" for obs, entry, _ in scored),
            grade, defect_type,
            "; ".join(recommendations),
            top_entry.risk,
            codes=codes,
        )

    # ---- step 5 ---------------------------------------------------------
    def _from_keyword(self, ctx: _Context) -> ClassificationResult:
        code = infer_code(ctx.text)
        entry = self.provider.defect(code)
        if entry is None:
            logger.debug("defect_code.unknown", code=code, source="keyword")
            return self.zero_result(ctx.sector, matched_rule="keyword_match")

        grade = adjust_grade(entry.default_grade, extract_percentage(ctx.text))
        grade = escalate_for_sector(grade, entry.type, ctx.sector)
        recommendation = entry.recommended_action
        if entry.code == "S/A":
            recommendation = analyze_service_connection(ctx.text) or recommendation

        return self._build(
            ctx, "keyword_match", entry.code, entry.description, grade, entry.type,
            recommendation, entry.risk, codes=[entry.code],
        )
