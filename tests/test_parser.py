# tests/test_parser.py
"""
Unit tests for the observation parser.

Run:
    pytest tests/test_parser.py -v
"""

from drainage.cleaning import join_observations, normalize_text
from drainage.constants import DEFAULT_OBSERVATION
from drainage.parser import (
    ParsedObservation,
    extract_percentage,
    normalize_meterage,
    parse,
    parsed_codes,
    percentage_value,
    split_segments,
)


# ============================================================
# TEST: HELPERS
# ============================================================

def test_normalize_meterage():
    assert normalize_meterage("13.1") == "13.10m"
    assert normalize_meterage("13.10m") == "13.10m"
    assert normalize_meterage("13 m") == "13.00m"


def test_extract_percentage():
    assert extract_percentage("coarse, 5% cross-sectional area loss") == "5"
    assert extract_percentage("10-20% loss") == "10-20"
    assert extract_percentage("10 - 20 %") == "10-20"
    assert extract_percentage("no percentage here") == ""
    assert extract_percentage("") == ""
    assert extract_percentage(None) == ""


def test_percentage_value_uses_upper_bound():
    assert percentage_value("5") == 5
    assert percentage_value("10-20") == 20
    assert percentage_value("") is None


def test_split_segments_on_stops_and_continuations():
    assert split_segments("FC 1.0m fracture. DER 2.0m deposits") == ["FC 1.0m fracture", "DER 2.0m deposits"]
    assert split_segments("WL 5.0m 30%. WL 8.0m 45%") == ["WL 5.0m 30%", "WL 8.0m 45%"]
    assert split_segments("FC 1.0m fracture, DER 2.0m deposits") == ["FC 1.0m fracture", "DER 2.0m deposits"]
    # decimal meterages are never split
    assert split_segments("DER 13.07m, 16.93m: deposits") == ["DER 13.07m, 16.93m: deposits"]


def test_normalize_text_folds_layout():
    assert normalize_text("FC  4.2m  fracture..") == "FC 4.2m fracture."
    assert normalize_text("５％ loss") == "5% loss"
    assert normalize_text(None) == ""


def test_join_observations():
    assert join_observations(["FC 1.0m fracture.", "DER 2.0m deposits"]) == "FC 1.0m fracture. DER 2.0m deposits"
    assert join_observations([]) == DEFAULT_OBSERVATION
    assert join_observations(["  ", ""]) == DEFAULT_OBSERVATION


# ============================================================
# TEST: SHAPES
# ============================================================

def test_multi_meterage_list_expands():
    obs = parse("DER 13.07m, 16.93m, 17.73m: Settled deposits, coarse, 5% cross-sectional area loss")

    assert [o.meterage for o in obs] == ["13.07m", "16.93m", "17.73m"]
    assert {o.defect_code for o in obs} == {"DER"}
    assert all(o.percentage == "5" for o in obs)
    assert obs[0].description == "Settled deposits, coarse, 5% cross-sectional area loss"


def test_multi_meterage_duplicates_suppressed():
    obs = parse("DER 13.07m, 13.07m, 14.00m: deposits")
    assert [o.meterage for o in obs] == ["13.07m", "14.00m"]


def test_code_meterage_description():
    obs = parse("FC 4.2m circumferential fracture")
    assert obs == [ParsedObservation("4.20m", "FC", "circumferential fracture", "")]


def test_meterage_code_description():
    obs = parse("4.20m FC: Fracture circumferential")
    assert len(obs) == 1
    assert obs[0].defect_code == "FC"
    assert obs[0].meterage == "4.20m"
    assert obs[0].description == "Fracture circumferential"


def test_code_description_at_meterage():
    obs = parse("DES Settled deposits, fine, 10% cross-sectional area loss at 21.75m")
    assert len(obs) == 1
    assert obs[0].defect_code == "DES"
    assert obs[0].meterage == "21.75m"
    assert obs[0].percentage == "10"


def test_loose_shape_with_trailing_percentage():
    obs = parse("Survey note at 5.0m WL water level 30%")
    assert len(obs) == 1
    assert obs[0].meterage == "5.00m"
    assert obs[0].defect_code == "WL"
    assert obs[0].description == "water level"
    assert obs[0].percentage == "30"


def test_percentage_range_kept_as_string():
    obs = parse("DER 2.0m deposits 10-20% loss")
    assert obs[0].percentage == "10-20"


def test_code_inferred_from_description():
    obs = parse("12.5m longitudinal fracture")
    assert len(obs) == 1
    assert obs[0].defect_code == "FL"
    assert obs[0].meterage == "12.50m"


def test_lower_case_known_code():
    obs = parse("fc 4.2m circumferential fracture")
    assert len(obs) == 1
    assert obs[0].defect_code == "FC"
    assert obs[0].meterage == "4.20m"
    assert parse("der 13.07m, 16.93m: settled deposits")[1].defect_code == "DER"


def test_lower_case_word_is_not_a_code():
    assert parse("at 4.2m crack") == []


def test_service_connection_code():
    obs = parse("S/A 4.0m bung in line")
    assert obs[0].defect_code == "S/A"


def test_multiple_sentences_keep_text_order():
    assert parsed_codes("DER 9.0m coarse deposits. FC 4.2m circumferential fracture. DER 11.0m deposits") == ["DER", "FC"]


# ============================================================
# TEST: NO MATCH / DETERMINISM
# ============================================================

def test_unparseable_text_is_empty():
    assert parse("random words with no codes") == []
    assert parse("") == []
    assert parse(None) == []


def test_parse_is_deterministic():
    text = "FC 4.2m fracture. DER 9.0m, 10.5m: coarse deposits 20%. 12.5m longitudinal fracture"
    assert parse(text) == parse(text)
    assert [o.to_dict() for o in parse(text)] == [o.to_dict() for o in parse(text)]
