# drainage/mapping.py
# Survey export header → internal column
MAP_IN2INTERNAL = {
    "Item No": "item_no",
    "Item": "item_no",
    "Section": "item_no",
    "Letter Suffix": "letter_suffix",
    "Observations": "observations",
    "Defects": "observations",
    "Start MH": "start_mh",
    "Upstream Node": "start_mh",
    "Finish MH": "finish_mh",
    "Downstream Node": "finish_mh",
    "Pipe Size": "pipe_size",
    "Pipe Material": "pipe_material",
    "Total Length": "total_length",
    "Length Surveyed": "total_length",
    "Structural Grade": "secstat_structural",
    "SECSTAT Structural": "secstat_structural",
    "Service Grade": "secstat_service",
    "SECSTAT Service": "secstat_service",
}

SECTION_FIELDS = ["start_mh", "finish_mh", "pipe_size", "pipe_material", "total_length"]

# Dashboard export column order
ORDER_OUTCOLS = [
    "item_label",
    "start_mh", "finish_mh", "pipe_size", "pipe_material", "total_length",
    "defect_type", "severity_grade", "defect_codes",
    "recommendations", "adoptable", "estimated_cost",
    "secstat_applied",
    "rules_run_id", "ruleset_version", "derived_at",
]
