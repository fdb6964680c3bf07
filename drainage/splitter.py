# drainage/splitter.py
"""
Multi-defect splitter.

A section whose text carries both structural and service defects is split
into one record per defect type so each record holds a single
classification. Groups are ordered by the first appearance of their type in
one left-to-right scan of the text: the first group keeps the bare item
number, later groups get "a", "b", ... in scan order.
"""
from __future__ import annotations
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .keywords import infer_code
from .parser import parse, split_segments
from .standards import StandardsProvider, load_standards


@dataclass
class SectionRecord:
    """One (possibly split) section carrying a single defect type."""
    item_no: Any
    letter_suffix: str
    defect_type: Optional[str]
    defects: str
    observations: List[str] = field(default_factory=list)
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def item_label(self) -> str:
        return f"{self.item_no}{self.letter_suffix}"


def assign_suffixes(count: int) -> List[str]:
    """['', 'a', 'b', ...] for `count` records."""
    if count > len(string.ascii_lowercase) + 1:
        raise ValueError(f"Cannot assign letter suffixes to {count} records")
    return [""] + list(string.ascii_lowercase[: max(count - 1, 0)])


def fragment_type(fragment: str, provider: StandardsProvider) -> Optional[str]:
    """Defect type of a text fragment: first known parsed code, else keyword inference."""
    for obs in parse(fragment):
        dtype = provider.defect_type_of(obs.defect_code)
        if dtype:
            return dtype
    return provider.defect_type_of(infer_code(fragment))


def _scan(defect_text: str, provider: StandardsProvider):
    """[(fragment, type-or-None)] in text order."""
    return [(frag, fragment_type(frag, provider)) for frag in split_segments(defect_text)]


def has_mixed_defects(defect_text: str, provider: Optional[StandardsProvider] = None) -> bool:
    provider = provider or load_standards()
    types = {t for _, t in _scan(defect_text, provider) if t}
    return len(types) > 1


def split(
    defect_text: str,
    base_item_no: Any,
    section_template: Optional[Mapping[str, Any]] = None,
    provider: Optional[StandardsProvider] = None,
) -> List[SectionRecord]:
    """
    Split a dual-defect section into single-type records.

    Args:
        defect_text: Joined raw observation text for the section
        base_item_no: Item number of the source section
        section_template: Non-defect fields copied onto every record
        provider: Standards provider (for code → type lookup)

    Returns:
        SectionRecord list. A single record with no suffix when the text
        does not hold both types. Fragments without a recognised type stay
        with the first group.
    """
    provider = provider or load_standards()
    template = dict(section_template or {})
    scanned = _scan(defect_text, provider)

    order: List[str] = []
    for _, dtype in scanned:
        if dtype and dtype not in order:
            order.append(dtype)

    if len(order) < 2:
        return [SectionRecord(
            item_no=base_item_no,
            letter_suffix="",
            defect_type=order[0] if order else None,
            defects=defect_text,
            observations=[frag for frag, _ in scanned],
            fields=dict(template),
        )]

    groups: Dict[str, List[str]] = {dtype: [] for dtype in order}
    for frag, dtype in scanned:
        groups[dtype or order[0]].append(frag)

    records = []
    for dtype, suffix in zip(order, assign_suffixes(len(order))):
        fragments = groups[dtype]
        records.append(SectionRecord(
            item_no=base_item_no,
            letter_suffix=suffix,
            defect_type=dtype,
            defects=". ".join(fragments),
            observations=fragments,
            fields=dict(template),
        ))
    return records
