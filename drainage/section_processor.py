# drainage/section_processor.py
"""
Section-level pipeline.

raw observations → joined text → (split when mixed) → classify each record
→ authoritative SECSTAT grades replace the inferred grade per type.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .classifier import ClassificationResult, DefectClassifier
from .cleaning import join_observations
from .constants import SERVICE, STRUCTURAL
from .splitter import SectionRecord, has_mixed_defects, split

_TEMPLATE_FIELDS = ("start_mh", "finish_mh", "pipe_size", "pipe_material", "total_length")


@dataclass
class ProcessedRecord:
    record: SectionRecord
    result: ClassificationResult
    secstat_applied: bool = False

    @property
    def item_label(self) -> str:
        return self.record.item_label


@dataclass
class ProcessedSection:
    """All classified records of one raw section plus its section-level grade."""
    item_no: Any
    defect_text: str
    records: List[ProcessedRecord] = field(default_factory=list)
    type_grades: Dict[str, int] = field(default_factory=dict)
    section_grade: int = 0
    was_split: bool = False


def secstat_grade(secstat: Optional[Mapping[str, Any]], defect_type: str) -> Optional[int]:
    """Authoritative grade for one type, None when absent or not a number."""
    if not secstat:
        return None
    value = secstat.get(defect_type)
    if value is None:
        return None
    try:
        return max(0, min(int(value), 5))
    except (TypeError, ValueError):
        return None


class SectionProcessor:
    """
    Classify whole inspection sections.

    Args:
        classifier: DefectClassifier shared across sections (read-only)
    """

    def __init__(self, classifier: Optional[DefectClassifier] = None):
        self.classifier = classifier or DefectClassifier()

    def process_section(
        self,
        section: Mapping[str, Any],
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> ProcessedSection:
        """
        Classify one section.

        Args:
            section: dict with `item_no`, `raw_observations` and optionally
                `secstat_grades` and pipe fields
            sector: Sector name
            cost_bands: Optional user cost bands keyed by grade

        Returns:
            ProcessedSection with one record per defect type (split sections
            get letter suffixes) and the section grade
        """
        text = join_observations(section.get("raw_observations") or [])
        template = {k: section.get(k) for k in _TEMPLATE_FIELDS if section.get(k) is not None}
        provider = self.classifier.provider
        secstat = section.get("secstat_grades")

        mixed = has_mixed_defects(text, provider)
        if mixed:
            records = split(text, section.get("item_no"), template, provider)
        else:
            records = [SectionRecord(section.get("item_no"), "", None, text, [text], dict(template))]

        processed: List[ProcessedRecord] = []
        type_grades: Dict[str, int] = {}
        for record in records:
            result = self.classifier.classify(record.defects, sector, cost_bands)
            override = secstat_grade(secstat, result.defect_type)
            applied = override is not None
            if applied:
                result = self.classifier.regrade(result, override, sector, cost_bands)
            processed.append(ProcessedRecord(record, result, applied))
            dtype = record.defect_type or result.defect_type
            type_grades[dtype] = max(type_grades.get(dtype, 0), result.severity_grade)

        # a SECSTAT grade for a type the text never showed still counts
        for dtype in (STRUCTURAL, SERVICE):
            override = secstat_grade(secstat, dtype)
            if override is not None and dtype not in type_grades:
                type_grades[dtype] = override

        return ProcessedSection(
            item_no=section.get("item_no"),
            defect_text=text,
            records=processed,
            type_grades=type_grades,
            section_grade=max(type_grades.values(), default=0),
            was_split=mixed,
        )

    def process_sections(
        self,
        sections: List[Mapping[str, Any]],
        sector: str = "utilities",
        cost_bands: Optional[Mapping[Any, str]] = None,
    ) -> List[ProcessedSection]:
        return [self.process_section(s, sector, cost_bands) for s in sections]
