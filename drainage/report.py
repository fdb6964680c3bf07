# drainage/report.py
"""
Sector analysis reports and tabular views over classification results.
"""
from __future__ import annotations
from typing import Any, List, Mapping, Optional

import pandas as pd

from .classifier import ClassificationResult, DefectClassifier
from .constants import ADOPTABLE_CONDITIONAL, ADOPTABLE_NO, ADOPTABLE_YES, NO_DEFECT_CODE, SERVICE, STRUCTURAL
from .standards import StandardsProvider, load_standards

_BASE_STANDARDS = [
    "MSCC5 Defect Classification",
    "SRM Scoring System",
    "Drain Repair Book (4th Edition)",
    "Sewer Cleaning Manual",
]


def generate_sector_report(
    results: List[ClassificationResult],
    sector: str,
    provider: Optional[StandardsProvider] = None,
    labels: Optional[List[str]] = None,
) -> str:
    """
    Markdown summary of classification results for one sector.

    Args:
        results: Classification results (one per section or sub-section)
        sector: Sector the results were classified for
        provider: Standards provider for the sector catalogue
        labels: Optional item labels aligned with `results`

    Returns:
        Markdown text
    """
    provider = provider or load_standards()
    sector = (sector or "").strip().lower()
    labels = labels or [str(i + 1) for i in range(len(results))]

    defect_sections = [r for r in results if r.defect_code != NO_DEFECT_CODE or r.severity_grade > 0]
    structural = [r for r in results if r.defect_type == STRUCTURAL and r.severity_grade > 0]
    service = [r for r in results if r.defect_type == SERVICE and r.severity_grade > 0]

    lines = [f"## WRc Standards Analysis Report - {sector.upper()} Sector", ""]
    lines += [
        "**Summary:**",
        f"- Total sections analyzed: {len(results)}",
        f"- Sections with defects: {len(defect_sections)}",
        f"- Structural defects: {len(structural)}",
        f"- Service defects: {len(service)}",
        "",
    ]

    urgent = [(label, r) for label, r in zip(labels, results) if r.severity_grade >= 4]
    if urgent:
        lines.append("**Urgent Items (Grade 4-5):**")
        for label, r in urgent:
            lines.append(f"- Item {label}: {r.defect_code} grade {r.severity_grade} ({r.defect_type}) - {r.recommendations}")
        lines.append("")

    if sector == "adoption":
        lines += [
            "**Adoption Assessment (OS19x Standards):**",
            f"- Immediately adoptable: {sum(r.adoptable == ADOPTABLE_YES for r in results)}",
            f"- Conditional adoption: {sum(r.adoptable == ADOPTABLE_CONDITIONAL for r in results)}",
            f"- Rejected for adoption: {sum(r.adoptable == ADOPTABLE_NO for r in results)}",
            "",
        ]
    elif sector == "utilities":
        lines += [
            "**Operational Priorities:**",
            f"- Structural repairs required: {len(structural)}",
            f"- Cleansing required: {sum(bool(r.cleaning_methods) for r in service)}",
            "",
        ]
    elif sector == "insurance":
        lines += [
            "**Insurance Assessment:**",
            f"- Sections needing repair before cover: {sum(r.severity_grade >= 3 for r in results)}",
            f"- Structural claims exposure: {sum(r.severity_grade >= 3 for r in structural)}",
            "",
        ]

    lines.append("**Standards Applied:**")
    lines += [f"- {name}" for name in _BASE_STANDARDS]
    if sector == "adoption":
        lines.append("- OS19x Adoption Standards")
    catalogue = provider.sector_standards(sector)
    if catalogue:
        for std in catalogue["standards"]:
            version = f" ({std['version']})" if std.get("version") else ""
            lines.append(f"- {std['name']}{version}: {std['description']}")
        lines += ["", f"_{catalogue['compliance_note']}_"]

    return "\n".join(lines) + "\n"


def results_to_dataframe(results: List[ClassificationResult], labels: Optional[List[str]] = None) -> pd.DataFrame:
    """One row per result with the flat, report-facing fields."""
    rows = []
    for i, r in enumerate(results):
        rows.append({
            "item_label": labels[i] if labels else str(i + 1),
            "defect_code": r.defect_code,
            "defect_description": r.defect_description,
            "defect_type": r.defect_type,
            "severity_grade": r.severity_grade,
            "adoptable": r.adoptable,
            "estimated_cost": r.estimated_cost,
            "recommendations": r.recommendations,
            "recommendation_priority": r.recommendation_priority,
            "adoption_notes": r.adoption_notes,
            "patch_count": r.patch_count,
            "patching_cost": r.patching_cost,
        })
    return pd.DataFrame(rows)


def classify_batch(
    df: pd.DataFrame,
    classifier: Optional[DefectClassifier] = None,
    text_col: str = "observations",
    sector: str = "utilities",
    cost_bands: Optional[Mapping[Any, str]] = None,
) -> pd.DataFrame:
    """
    Classify every row of a DataFrame.

    Returns:
        The input frame with Defect_Code, Severity_Grade, Defect_Type,
        Adoptable, Estimated_Cost and Recommendations appended
    """
    classifier = classifier or DefectClassifier()
    results = []
    for _, row in df.iterrows():
        text = row.get(text_col, "")
        result = classifier.classify("" if pd.isna(text) else str(text), sector, cost_bands)
        results.append({
            "Defect_Code": result.defect_code,
            "Severity_Grade": result.severity_grade,
            "Defect_Type": result.defect_type,
            "Adoptable": result.adoptable,
            "Estimated_Cost": result.estimated_cost,
            "Recommendations": result.recommendations,
        })
    return pd.concat([df.reset_index(drop=True), pd.DataFrame(results)], axis=1)
