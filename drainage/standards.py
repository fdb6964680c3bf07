# drainage/standards.py
"""
Reference standards used by the classification pipeline.

Tables:
- MSCC5 defect codes (description, type, default grade, risk, action)
- SRM grading by (type, grade)
- OS19x adoption thresholds and banned codes
- Per-sector adoption standards (belly threshold, standard name)
- WRc Drain Repair Book and Sewer Cleaning Manual method lists
- Condition → trigger-code action table
- Sector standards catalogue for report footers

All tables are read-only. A StandardsProvider is built once at startup
(optionally from a directory of JSON files) and passed explicitly to the
classifier and composer.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .constants import SERVICE, STRUCTURAL
from .errors import StandardsLoadError

logger = structlog.get_logger(__name__)


# ============================================================================
# MSCC5 DEFECT CODES
# ============================================================================

@dataclass(frozen=True)
class DefectEntry:
    code: str
    description: str
    type: str  # structural | service
    default_grade: int
    risk: str
    recommended_action: str
    action_type: int


MSCC5_DEFECTS: Dict[str, Dict[str, Any]] = {
    # Structural
    "FC": {
        "description": "Fracture - circumferential",
        "type": STRUCTURAL, "default_grade": 3,
        "risk": "May indicate structural instability in the pipe wall.",
        "recommended_action": "Patch lining or excavation depending on severity",
        "action_type": 6,
    },
    "FL": {
        "description": "Fracture - longitudinal",
        "type": STRUCTURAL, "default_grade": 3,
        "risk": "Potential for pipe collapse or leakage.",
        "recommended_action": "Patch or full-length liner depending on location",
        "action_type": 6,
    },
    "CR": {
        "description": "Crack",
        "type": STRUCTURAL, "default_grade": 2,
        "risk": "May allow infiltration and could progress to fracture.",
        "recommended_action": "Seal or patch repair depending on extent",
        "action_type": 3,
    },
    "JDL": {
        "description": "Joint displacement - large",
        "type": STRUCTURAL, "default_grade": 4,
        "risk": "Can allow infiltration/exfiltration and blockages.",
        "recommended_action": "Excavation or robotic joint realignment",
        "action_type": 7,
    },
    "JDM": {
        "description": "Joint displacement - medium",
        "type": STRUCTURAL, "default_grade": 3,
        "risk": "Joint movement allowing infiltration and debris catchment.",
        "recommended_action": "Patch repair across the displaced joint",
        "action_type": 6,
    },
    "JDS": {
        "description": "Joint displacement - small",
        "type": STRUCTURAL, "default_grade": 2,
        "risk": "Minor structural concern with potential for progression.",
        "recommended_action": "Monitor and schedule inspection",
        "action_type": 1,
    },
    "OJM": {
        "description": "Open joint - medium",
        "type": STRUCTURAL, "default_grade": 3,
        "risk": "Loss of joint seal allowing infiltration and root ingress.",
        "recommended_action": "Patch repair or joint sealing",
        "action_type": 6,
    },
    "OJL": {
        "description": "Open joint - large",
        "type": STRUCTURAL, "default_grade": 4,
        "risk": "Exposed surround, soil loss and risk of void formation.",
        "recommended_action": "Excavate and re-make joint or install liner",
        "action_type": 7,
    },
    "DEF": {
        "description": "Deformity",
        "type": STRUCTURAL, "default_grade": 3,
        "risk": "Loss of pipe shape indicating load or bedding failure.",
        "recommended_action": "Structural liner or excavation and replacement",
        "action_type": 8,
    },
    "B": {
        "description": "Broken pipe",
        "type": STRUCTURAL, "default_grade": 5,
        "risk": "Pipe wall breached; collapse and soil ingress likely.",
        "recommended_action": "Excavate and replace affected section",
        "action_type": 8,
    },
    "H": {
        "description": "Hole in pipe wall",
        "type": STRUCTURAL, "default_grade": 4,
        "risk": "Soil and groundwater ingress through the pipe wall.",
        "recommended_action": "Excavate and replace or structural patch",
        "action_type": 8,
    },
    "CX": {
        "description": "Collapsed or severely deformed pipe",
        "type": STRUCTURAL, "default_grade": 5,
        "risk": "Flow capacity lost; imminent failure.",
        "recommended_action": "Excavate and replace",
        "action_type": 8,
    },
    "COL": {
        "description": "Collapse",
        "type": STRUCTURAL, "default_grade": 5,
        "risk": "Complete structural failure of the pipe.",
        "recommended_action": "Emergency excavation and replacement",
        "action_type": 8,
    },
    # Service
    "DER": {
        "description": "Deposits - coarse settled",
        "type": SERVICE, "default_grade": 3,
        "risk": "Reduces flow capacity and may cause blockages.",
        "recommended_action": "Desilt or high-pressure jetting",
        "action_type": 2,
    },
    "DES": {
        "description": "Deposits - fine settled",
        "type": SERVICE, "default_grade": 3,
        "risk": "May cause partial blockage or contribute to silt build-up.",
        "recommended_action": "Mechanical or hydraulic cleaning",
        "action_type": 2,
    },
    "DEC": {
        "description": "Deposits - concrete",
        "type": SERVICE, "default_grade": 4,
        "risk": "Hard deposit restricting flow; will not clear by jetting alone.",
        "recommended_action": "Directional water cutting to remove hard deposit",
        "action_type": 4,
    },
    "WL": {
        "description": "Water level above normal",
        "type": SERVICE, "default_grade": 2,
        "risk": "May suggest partial blockage or gradient issue.",
        "recommended_action": "Check for downstream restriction",
        "action_type": 1,
    },
    "RI": {
        "description": "Root intrusion",
        "type": SERVICE, "default_grade": 3,
        "risk": "Causes blockages and potential structural damage.",
        "recommended_action": "Root cutting and chemical treatment",
        "action_type": 4,
    },
    "RO": {
        "description": "Roots - other",
        "type": SERVICE, "default_grade": 3,
        "risk": "Root mass reducing flow and catching debris.",
        "recommended_action": "Mechanical root cutting",
        "action_type": 4,
    },
    "OB": {
        "description": "Obstacle",
        "type": SERVICE, "default_grade": 3,
        "risk": "Reduces flow capacity and may cause blockages.",
        "recommended_action": "Remove obstacle or bypass",
        "action_type": 2,
    },
    "OBI": {
        "description": "Obstacle - other obstacles / intruding",
        "type": SERVICE, "default_grade": 2,
        "risk": "Intruding object restricting flow and snagging debris.",
        "recommended_action": "Remove intruding obstacle by robotic cutting",
        "action_type": 4,
    },
    "GRE": {
        "description": "Grease deposits",
        "type": SERVICE, "default_grade": 2,
        "risk": "Build-up of fats narrowing the bore.",
        "recommended_action": "Hot water jetting",
        "action_type": 3,
    },
    "BLO": {
        "description": "Complete blockage",
        "type": SERVICE, "default_grade": 5,
        "risk": "No flow; surcharge and flooding risk.",
        "recommended_action": "Immediate high-pressure jetting to clear blockage",
        "action_type": 5,
    },
    "S/A": {
        "description": "Service connection",
        "type": SERVICE, "default_grade": 2,
        "risk": "Connection status unconfirmed.",
        "recommended_action": "Verify connection status with contractor",
        "action_type": 1,
    },
}


# ============================================================================
# SRM GRADING
# ============================================================================

SRM_SCORING: Dict[str, Dict[int, Dict[str, Any]]] = {
    STRUCTURAL: {
        0: {"description": "No defects", "criteria": "No structural defects recorded",
            "action_required": "No action required", "adoptable": True},
        1: {"description": "Acceptable structural condition", "criteria": "Minor defects, no deterioration expected",
            "action_required": "No immediate action", "adoptable": True},
        2: {"description": "Minor structural defects", "criteria": "Some deterioration, unlikely to collapse",
            "action_required": "Monitor at next scheduled survey", "adoptable": True},
        3: {"description": "Moderate structural defects", "criteria": "Collapse unlikely in near future but deterioration likely",
            "action_required": "Plan repair within 5 years", "adoptable": False},
        4: {"description": "Significant structural defects", "criteria": "Collapse likely in foreseeable future",
            "action_required": "Repair or replace within 1-2 years", "adoptable": False},
        5: {"description": "Severe structural defects", "criteria": "Collapsed or collapse imminent",
            "action_required": "Immediate repair or replacement", "adoptable": False},
    },
    SERVICE: {
        0: {"description": "No defects", "criteria": "No service defects recorded",
            "action_required": "No action required", "adoptable": True},
        1: {"description": "No service issues", "criteria": "Free flowing with negligible loss",
            "action_required": "No immediate action", "adoptable": True},
        2: {"description": "Minor service impacts", "criteria": "Minor loss of capacity",
            "action_required": "Cleanse at next programmed visit", "adoptable": True},
        3: {"description": "Moderate service defects", "criteria": "Noticeable loss of capacity",
            "action_required": "Cleanse and resurvey", "adoptable": True},
        4: {"description": "Major service defects", "criteria": "Serious loss of capacity, blockage likely",
            "action_required": "Priority cleansing required", "adoptable": False},
        5: {"description": "Blocked or near blocked", "criteria": "Flow severely restricted or stopped",
            "action_required": "Immediate clearance required", "adoptable": False},
    },
}


# ============================================================================
# OS19x ADOPTION
# ============================================================================

OS19X_ADOPTION: Dict[str, Any] = {
    "grading_thresholds": {
        STRUCTURAL: {
            "max_grade": 3,
            "description": "Pipes with structural grade 4 or 5 are not adoptable unless repaired.",
        },
        SERVICE: {
            "max_grade": 3,
            "description": "Pipes with service grade 4 or 5 require cleaning before adoption.",
        },
    },
    "banned_defects": {
        "codes": ["B", "CO", "COL", "CX", "H", "MRJ", "F"],
        "description": "Presence of these severe defects results in automatic rejection for adoption.",
    },
}

BANNED_CODE_NOTE = "Contains banned defect code - automatic rejection for adoption"


# ============================================================================
# ADOPTION STANDARDS (per sector)
# ============================================================================

@dataclass(frozen=True)
class AdoptionStandard:
    sector: str
    belly_threshold: int  # percent
    standard_name: str
    authority: str = ""


# Used whenever the persisted row for a sector is unavailable
FALLBACK_ADOPTION_STANDARDS: Dict[str, AdoptionStandard] = {
    "construction": AdoptionStandard("construction", 10, "BS EN 1610:2015", "BSI British Standards"),
    "highways": AdoptionStandard("highways", 15, "HADDMS", "Department for Transport"),
    "adoption": AdoptionStandard("adoption", 20, "Sewers for Adoption 8th Edition", "Water UK"),
    "utilities": AdoptionStandard("utilities", 25, "WRc SRM", "WRc Group"),
    "domestic": AdoptionStandard("domestic", 25, "Building Regulations Part H", "UK Government"),
    "insurance": AdoptionStandard("insurance", 30, "ABI Guidelines", "Association of British Insurers"),
}


# ============================================================================
# DRAIN REPAIR BOOK / SEWER CLEANING MANUAL
# ============================================================================

DRAIN_REPAIR_BOOK: Dict[str, Dict[str, Any]] = {
    "FC": {
        "defect": "Fracture - circumferential",
        "suggested_repairs": [
            "Local patch lining (glass mat or silicate)",
            "Excavation and replace short section if structurally compromised",
        ],
        "repair_priority": "Medium", "action_type": 6,
    },
    "FL": {
        "defect": "Fracture - longitudinal",
        "suggested_repairs": [
            "Install full-length CIPP liner",
            "Excavate and replace if at joint or severely displaced",
        ],
        "repair_priority": "High", "action_type": 6,
    },
    "CR": {
        "defect": "Crack",
        "suggested_repairs": [
            "Local patch lining over cracked length",
            "Resurvey to confirm crack is not progressing",
        ],
        "repair_priority": "Low", "action_type": 3,
    },
    "JDL": {
        "defect": "Joint displacement - large",
        "suggested_repairs": [
            "Excavate and re-lay joint to line and level",
            "Robotic joint realignment where access allows",
        ],
        "repair_priority": "High", "action_type": 7,
    },
    "JDM": {
        "defect": "Joint displacement - medium",
        "suggested_repairs": ["Patch repair across displaced joint"],
        "repair_priority": "Medium", "action_type": 6,
    },
    "OJM": {
        "defect": "Open joint - medium",
        "suggested_repairs": ["Patch repair or joint sealing", "Air test after repair"],
        "repair_priority": "Medium", "action_type": 6,
    },
    "OJL": {
        "defect": "Open joint - large",
        "suggested_repairs": ["Excavate and re-make joint", "Full-length CIPP liner if multiple joints open"],
        "repair_priority": "High", "action_type": 7,
    },
    "DEF": {
        "defect": "Deformity",
        "suggested_repairs": ["Structural CIPP liner", "Excavate and replace if deformation exceeds 10%"],
        "repair_priority": "High", "action_type": 8,
    },
    "DER": {
        "defect": "Deposits - coarse",
        "suggested_repairs": [
            "High-pressure water jetting",
            "CCTV post-clean inspection",
            "Root-cutting if deposit is organic or recurring",
        ],
        "repair_priority": "Medium", "action_type": 2,
    },
    "DES": {
        "defect": "Deposits - fine",
        "suggested_repairs": [
            "Desilting using vacuum or jet-vac combo unit",
            "Flush and re-inspect",
            "Assess for upstream source if recurring",
        ],
        "repair_priority": "Low", "action_type": 2,
    },
    "WL": {
        "defect": "High water level",
        "suggested_repairs": [
            "Investigate downstream blockage",
            "Check pipe gradient or backfall",
            "Flush or survey upstream/downstream to locate issue",
        ],
        "repair_priority": "Varies (based on severity)", "action_type": 1,
    },
    "B": {
        "defect": "Broken pipe",
        "suggested_repairs": [
            "Excavate and replace affected section",
            "Consider CIPP liner if structurally sound around defect",
        ],
        "repair_priority": "Urgent", "action_type": 8,
    },
}

SEWER_CLEANING_MANUAL: Dict[str, Dict[str, Any]] = {
    "DES": {
        "description": "Deposits - fine (silt, mud)",
        "recommended_methods": [
            "Jetting with medium-pressure nozzle",
            "Vacuum extraction (Jet-Vac unit)",
            "Flushing to downstream manhole",
        ],
        "cleaning_frequency": "As required or post-storm", "action_type": 2,
    },
    "DER": {
        "description": "Deposits - coarse (gravel, debris)",
        "recommended_methods": [
            "Jet-vac cleaning for material removal",
            "High-pressure jetting with rotating nozzle",
            "Post-clean CCTV verification survey",
            "Bucket machine for large pipes (>450mm)",
        ],
        "cleaning_frequency": "Quarterly or after CCTV trigger", "action_type": 2,
    },
    "DEC": {
        "description": "Deposits - concrete (hard deposits)",
        "recommended_methods": [
            "Directional water cutting to remove hard deposit and concrete",
            "High-pressure rotary cutting nozzle (3000+ PSI)",
            "Post-cutting CCTV verification survey",
            "Debris removal via jet-vac extraction",
        ],
        "cleaning_frequency": "Immediate upon detection - one-time removal", "action_type": 4,
    },
    "GRE": {
        "description": "Grease or fat deposits",
        "recommended_methods": [
            "Hot water jetting",
            "Enzymatic cleaner dosing (if repeated)",
            "Education/upstream source mitigation",
        ],
        "cleaning_frequency": "Monthly to quarterly in food service areas", "action_type": 3,
    },
    "RO": {
        "description": "Root ingress",
        "recommended_methods": [
            "Mechanical root cutting",
            "Hydraulic root removal nozzle",
            "CCTV confirmation post-clean",
            "Root barrier or liner for long-term control",
        ],
        "cleaning_frequency": "Annual or on reoccurrence", "action_type": 4,
    },
    "WL": {
        "description": "Water level above normal (indicating potential downstream blockage)",
        "recommended_methods": [
            "Cleanse and survey to investigate the high water levels",
            "Check downstream manholes for surcharge or blockage",
            "High-pressure jetting to clear potential downstream obstruction",
            "CCTV survey downstream sections to identify blockage location",
        ],
        "cleaning_frequency": "Immediate for >50% water levels, event-driven for others", "action_type": 3,
    },
    "BLO": {
        "description": "Complete blockage",
        "recommended_methods": [
            "High-pressure jetting with rotating head",
            "Vacuum removal at next accessible chamber",
            "CCTV to confirm clearance",
        ],
        "cleaning_frequency": "Immediate response", "action_type": 5,
    },
}


# ============================================================================
# CONDITION TRIGGER ACTIONS
# ============================================================================

CONDITION_TRIGGER_ACTIONS: List[Dict[str, Any]] = [
    {"condition": "Structural Grade 4 or 5", "trigger_codes": ["FC", "FL", "JDL", "CX", "B"],
     "recommended_action": "Patch lining or excavation", "action_type": 6,
     "notes": "Based on Drain Repair Book & SRM", "min_grade": 4},
    {"condition": "Service Grade 4 or 5", "trigger_codes": ["DES", "DER", "WL", "BLO"],
     "recommended_action": "Jetting / desilting", "action_type": 2,
     "notes": "Cleaning manual thresholds", "min_grade": 4},
    {"condition": "Root Ingress", "trigger_codes": ["RI", "RO"],
     "recommended_action": "Root cutting + reline", "action_type": 4,
     "notes": "Consider CIPP relining if repeated"},
    {"condition": "Water Level Above Pipe", "trigger_codes": ["WL"],
     "recommended_action": "Check downstream MH + jet", "action_type": 1,
     "notes": "Possible partial blockage"},
    {"condition": "Displaced Joint (Large)", "trigger_codes": ["JDL"],
     "recommended_action": "Patch / robotic repair", "action_type": 6,
     "notes": "Non-adoptable under OS19x"},
    {"condition": "Broken Pipe", "trigger_codes": ["B"],
     "recommended_action": "Excavate and replace", "action_type": 8,
     "notes": "Mandatory under adoption criteria"},
    {"condition": "Circumferential/Longitudinal Fracture", "trigger_codes": ["FC", "FL"],
     "recommended_action": "Patch if isolated, CIPP if extensive", "action_type": 6,
     "notes": "MSCC5 + Drain Repair Book"},
    {"condition": "Heavy Deposits (Coarse)", "trigger_codes": ["DER"],
     "recommended_action": "Jet vac or bucket removal", "action_type": 2,
     "notes": "Flow loss >20% triggers fail"},
    {"condition": "Fine Silt or Settled Material", "trigger_codes": ["DES"],
     "recommended_action": "Desilt or flush", "action_type": 2,
     "notes": "Reinspect post-clean"},
    {"condition": "Deformed Pipe", "trigger_codes": ["CX", "DEF"],
     "recommended_action": "Excavation or liner", "action_type": 8,
     "notes": "Structural failure warning"},
]


# ============================================================================
# SECTOR STANDARDS CATALOGUE
# ============================================================================

SECTOR_STANDARDS: Dict[str, Dict[str, Any]] = {
    "utilities": {
        "sector_name": "Utilities",
        "standards": [
            {"name": "MSCC5", "version": "5th Edition", "authority": "WRc Group",
             "description": "Manual of Sewer Condition Classification"},
            {"name": "SRM", "version": "Latest Edition", "authority": "WRc Group",
             "description": "Sewerage Rehabilitation Manual"},
            {"name": "BS EN 752:2017", "authority": "BSI British Standards",
             "description": "Drain and sewer systems outside buildings - Sewer system management"},
            {"name": "WRc Drain Repair Book", "version": "4th Edition", "authority": "WRc Group",
             "description": "Guide to drain repair methods and techniques"},
            {"name": "WRc Sewer Cleaning Manual", "authority": "WRc Group",
             "description": "Cleaning methods and frequencies for sewer deposits"},
        ],
        "compliance_note": "Utilities defects are graded to MSCC5 with SRM interpretation of structural and service grades.",
    },
    "adoption": {
        "sector_name": "Adoption",
        "standards": [
            {"name": "Sewers for Adoption", "version": "8th Edition", "authority": "Water UK",
             "description": "Design and construction guidance for adoptable sewers"},
            {"name": "OS20x Series", "authority": "Water UK",
             "description": "Adoption inspection and coding requirements"},
            {"name": "BS EN 1610:2015", "authority": "BSI British Standards",
             "description": "Construction and testing of drains and sewers"},
        ],
        "compliance_note": "Adoption surveys are assessed against OS19x thresholds; banned defects reject the section outright.",
    },
    "highways": {
        "sector_name": "Highways",
        "standards": [
            {"name": "HADDMS", "authority": "Department for Transport",
             "description": "Highways Agency Drainage Data Management System"},
            {"name": "Design Manual for Roads and Bridges", "version": "Current Edition",
             "authority": "Department for Transport", "description": "Highway drainage design standards"},
            {"name": "BS EN 752:2017", "authority": "BSI British Standards",
             "description": "Drain and sewer systems outside buildings"},
        ],
        "compliance_note": "Highway drainage defects are reported in HADDMS format with DMRB condition criteria.",
    },
    "insurance": {
        "sector_name": "Insurance",
        "standards": [
            {"name": "ABI Guidelines", "authority": "Association of British Insurers",
             "description": "Insurance industry guidance for drainage claims"},
            {"name": "RICS Professional Standards", "authority": "RICS",
             "description": "Surveying standards for defect reporting"},
            {"name": "BS EN 752:2017", "authority": "BSI British Standards",
             "description": "Drain and sewer systems outside buildings"},
        ],
        "compliance_note": "Insurance reports document MSCC5 defects for claim assessment under ABI guidance.",
    },
    "construction": {
        "sector_name": "Construction",
        "standards": [
            {"name": "BS EN 1610:2015", "authority": "BSI British Standards",
             "description": "Construction and testing of drains and sewers"},
            {"name": "CDM Regulations 2015", "authority": "HSE",
             "description": "Construction (Design and Management) Regulations"},
            {"name": "CIRIA Guidelines", "authority": "CIRIA",
             "description": "Construction Industry Research and Information Association drainage standards"},
        ],
        "compliance_note": "Construction defects are assessed against BS EN 1610:2015 with CDM and CIRIA verification.",
    },
    "domestic": {
        "sector_name": "Domestic",
        "standards": [
            {"name": "Building Regulations Part H", "authority": "UK Government",
             "description": "Drainage and waste disposal for domestic properties"},
            {"name": "BS EN 752:2017", "authority": "BSI British Standards",
             "description": "Drain and sewer systems outside buildings"},
            {"name": "Trading Standards Guidelines", "authority": "Trading Standards",
             "description": "Consumer protection standards for domestic drainage work"},
        ],
        "compliance_note": "Domestic defects are assessed against Building Regulations Part H.",
    },
}


# ============================================================================
# PROVIDER
# ============================================================================

_JSON_TABLES = {
    "mscc5_defects.json": "defects",
    "srm_scoring.json": "srm",
    "os19x_adoption.json": "os19x",
    "drain_repair_book.json": "repair_book",
    "sewer_cleaning.json": "cleaning_manual",
}


@dataclass
class StandardsProvider:
    """
    Read-only access to every reference table.

    Construct once and share; nothing here mutates after __post_init__.
    `adoption_rows` holds persisted per-sector adoption standards; when None
    or missing a sector, the hardcoded fallback table is used.
    """
    defects: Dict[str, Dict[str, Any]] = field(default_factory=lambda: MSCC5_DEFECTS)
    srm: Dict[str, Dict[int, Dict[str, Any]]] = field(default_factory=lambda: SRM_SCORING)
    os19x: Dict[str, Any] = field(default_factory=lambda: OS19X_ADOPTION)
    repair_book: Dict[str, Dict[str, Any]] = field(default_factory=lambda: DRAIN_REPAIR_BOOK)
    cleaning_manual: Dict[str, Dict[str, Any]] = field(default_factory=lambda: SEWER_CLEANING_MANUAL)
    trigger_actions: List[Dict[str, Any]] = field(default_factory=lambda: CONDITION_TRIGGER_ACTIONS)
    sector_catalogue: Dict[str, Dict[str, Any]] = field(default_factory=lambda: SECTOR_STANDARDS)
    adoption_rows: Optional[Dict[str, AdoptionStandard]] = None

    def __post_init__(self):
        self._defects = {
            code.upper(): DefectEntry(code=code.upper(), **{k: v for k, v in data.items() if k != "code"})
            for code, data in self.defects.items()
        }

    # ---- defect codes -----------------------------------------------------
    def defect(self, code: Optional[str]) -> Optional[DefectEntry]:
        """Case-insensitive exact lookup of a defect code."""
        if not code:
            return None
        return self._defects.get(code.strip().upper())

    def defect_type_of(self, code: Optional[str]) -> Optional[str]:
        entry = self.defect(code)
        return entry.type if entry else None

    # ---- SRM ---------------------------------------------------------------
    def srm_grading(self, defect_type: str, grade: int) -> Dict[str, Any]:
        table = self.srm.get(defect_type) or self.srm[SERVICE]
        grade = min(max(int(grade), 0), 5)
        return dict(table.get(grade) or table[0])

    # ---- OS19x -------------------------------------------------------------
    @property
    def banned_codes(self) -> List[str]:
        return list(self.os19x["banned_defects"]["codes"])

    def os19x_threshold(self, defect_type: str) -> Dict[str, Any]:
        return self.os19x["grading_thresholds"][defect_type]

    # ---- adoption standards ------------------------------------------------
    def adoption_standard(self, sector: str) -> AdoptionStandard:
        """
        Adoption standard for a sector.

        Missing persisted rows fall back to the hardcoded per-sector table;
        unknown sectors use the utilities values.
        """
        key = (sector or "").strip().lower()
        if self.adoption_rows and key in self.adoption_rows:
            return self.adoption_rows[key]

        fallback = FALLBACK_ADOPTION_STANDARDS.get(key) or FALLBACK_ADOPTION_STANDARDS["utilities"]
        logger.warning(
            "adoption_standard.fallback",
            sector=key,
            belly_threshold=fallback.belly_threshold,
            standard_name=fallback.standard_name,
        )
        return fallback

    # ---- manuals -----------------------------------------------------------
    def repair_entry(self, code: Optional[str]) -> Optional[Dict[str, Any]]:
        return self.repair_book.get((code or "").upper())

    def cleaning_entry(self, code: Optional[str]) -> Optional[Dict[str, Any]]:
        return self.cleaning_manual.get((code or "").upper())

    def trigger_actions_for(self, code: str, grade: int = 0) -> List[Dict[str, Any]]:
        """Condition actions whose trigger codes include `code` and whose grade floor is met."""
        code = (code or "").upper()
        return [
            {k: v for k, v in item.items() if k != "min_grade"}
            for item in self.trigger_actions
            if code in item["trigger_codes"] and grade >= item.get("min_grade", 0)
        ]

    def sector_standards(self, sector: str) -> Optional[Dict[str, Any]]:
        return self.sector_catalogue.get((sector or "").strip().lower())


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StandardsLoadError(f"Cannot load standards file {path}: {e}") from e


def _int_keys(srm: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[int, Dict[str, Any]]]:
    try:
        return {t: {int(g): v for g, v in grades.items()} for t, grades in srm.items()}
    except (AttributeError, ValueError) as e:
        raise StandardsLoadError(f"srm_scoring.json has non-integer grades: {e}") from e


def load_standards(
    json_dir: Optional[Path] = None,
    adoption_rows: Optional[Dict[str, AdoptionStandard]] = None,
) -> StandardsProvider:
    """
    Build a StandardsProvider.

    Args:
        json_dir: Optional directory holding any of mscc5_defects.json,
            srm_scoring.json, os19x_adoption.json, drain_repair_book.json,
            sewer_cleaning.json. Files present replace the in-code table.
        adoption_rows: Persisted per-sector adoption standards

    Returns:
        StandardsProvider
    """
    overrides: Dict[str, Any] = {}
    if json_dir is not None:
        json_dir = Path(json_dir)
        if not json_dir.is_dir():
            raise StandardsLoadError(f"Standards directory not found: {json_dir}")
        for filename, attr in _JSON_TABLES.items():
            path = json_dir / filename
            if not path.exists():
                continue
            data = _read_json(path)
            if not isinstance(data, dict):
                raise StandardsLoadError(f"{path} must contain a JSON object")
            overrides[attr] = _int_keys(data) if attr == "srm" else data
            logger.info("standards.loaded", file=str(path), entries=len(data))

    try:
        return StandardsProvider(adoption_rows=adoption_rows, **overrides)
    except (KeyError, TypeError) as e:
        raise StandardsLoadError(f"Malformed defect table: {e}") from e
