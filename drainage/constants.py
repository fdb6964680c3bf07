# drainage/constants.py
"""Shared constants: rule versions, sectors and default cost bands."""

PARSER_VERSION = "1.0.0"
RULESET_VERSION = "MSCC5-2024.1"

SECTORS = ("utilities", "adoption", "highways", "insurance", "construction", "domestic")
DEFAULT_SECTOR = "utilities"

STRUCTURAL = "structural"
SERVICE = "service"

DEFAULT_COST_BANDS = {
    0: "£0",
    1: "£0-500",
    2: "£500-2,000",
    3: "£2,000-10,000",
    4: "£10,000-50,000",
    5: "£50,000+",
}
UNKNOWN_COST = "£TBC"

NO_DEFECT_CODE = "N/A"
NO_DEFECT_TEXT = "No action required pipe observed in acceptable structural and service condition"
NO_DEFECT_RISK = "Pipe in acceptable condition"

# Synthesized for sections that carry no raw observations
DEFAULT_OBSERVATION = "No service or structural defect found"

ADOPTABLE_YES = "Yes"
ADOPTABLE_NO = "No"
ADOPTABLE_CONDITIONAL = "Conditional"

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"

# Joint / connection distance that triggers a reopen recommendation (metres)
NEARBY_CONNECTION_M = 0.7
