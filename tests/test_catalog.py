import json

import pytest

from careline.services.clinical_engine import CatalogLoadError, Category, IndicatorCatalog, Priority, load_catalog, priority_rank
from careline.services.clinical_engine.catalog import DEFAULT_DUE_WITHIN, Outcome
from careline.services.clinical_engine.indicators import QOF_INDICATORS, get_read_code_for_metric

from conftest import make_indicator


def test_default_catalog_loads(catalog):
    assert catalog.version == "qof-2025-26"
    assert len(catalog) == len(QOF_INDICATORS)
    assert "hyp_bp_control" in catalog
    assert len({i.id for i in catalog}) == len(catalog)


def test_lookup_by_code_includes_variant_codes(catalog):
    assert [i.id for i in catalog.by_code("HYP009")] == ["hyp_bp_control"]
    assert [i.id for i in catalog.by_code("dm012")] == ["dm_hba1c_control"]
    assert catalog.by_code("NOPE") == []


def test_lookup_by_category(catalog):
    heart_failure = catalog.by_category(Category.HEART_FAILURE)
    assert {i.code for i in heart_failure} == {"HF003", "HF006"}


def test_find_returns_none_for_unknown_id(catalog):
    assert catalog.find("missing") is None
    with pytest.raises(KeyError):
        catalog.get("missing")


def test_valid_entries_load():
    catalog = load_catalog([make_indicator()], version="v1")
    assert isinstance(catalog, IndicatorCatalog)
    assert catalog.version == "v1"
    assert catalog.get("test_bp").code == "TST001"


def test_one_bad_entry_rejects_whole_catalog():
    bad = make_indicator(id="bad_one", category="not_a_category")

    with pytest.raises(CatalogLoadError) as excinfo:
        load_catalog([make_indicator(), bad])

    assert len(excinfo.value.problems) == 1
    assert "bad_one" in excinfo.value.problems[0]


def test_every_problem_is_reported():
    entries = [
        make_indicator(id="first", target_percent=150),
        make_indicator(id="second", code=""),
    ]

    with pytest.raises(CatalogLoadError) as excinfo:
        load_catalog(entries)

    assert len(excinfo.value.problems) == 2


def test_duplicate_ids_rejected():
    with pytest.raises(CatalogLoadError) as excinfo:
        load_catalog([make_indicator(), make_indicator()])
    assert "duplicate" in str(excinfo.value)


def test_unknown_metric_rejected():
    entry = make_indicator()
    entry["rule"] = dict(entry["rule"], metrics=["blood_sugar"], variants=[{"limits": {"blood_sugar": 7}}])

    with pytest.raises(CatalogLoadError):
        load_catalog([entry])


def test_unknown_placeholder_rejected():
    entry = make_indicator()
    entry["rule"] = dict(
        entry["rule"],
        on_breach={"priority": "high", "reason": "BP {bp_value}", "action_required": "Review"},
    )

    with pytest.raises(CatalogLoadError) as excinfo:
        load_catalog([entry])
    assert "bp_value" in str(excinfo.value)


@pytest.mark.parametrize("reason", [
    "BP {blood_pressure_systolic:.0f}",
    "BP {blood_pressure_systolic!r}",
    "BP {}",
])
def test_formatted_placeholder_rejected(reason):
    entry = make_indicator()
    entry["rule"] = dict(
        entry["rule"],
        on_breach={"priority": "high", "reason": reason, "action_required": "Review"},
    )

    with pytest.raises(CatalogLoadError) as excinfo:
        load_catalog([entry])
    assert "plain names" in str(excinfo.value)


def test_variant_limits_must_cover_metrics():
    entry = make_indicator()
    entry["rule"] = dict(entry["rule"], variants=[{"limits": {"blood_pressure_diastolic": 90}}])

    with pytest.raises(CatalogLoadError):
        load_catalog([entry])


def test_last_variant_must_be_default():
    entry = make_indicator()
    entry["rule"] = dict(
        entry["rule"],
        variants=[{"when": {"age_gte": 80}, "limits": {"blood_pressure_systolic": 150}}],
    )

    with pytest.raises(CatalogLoadError):
        load_catalog([entry])


def test_predicate_needs_exactly_one_operator():
    entry = make_indicator(applicability={"condition": ["Hypertension"], "age_gte": 18})

    with pytest.raises(CatalogLoadError):
        load_catalog([entry])


def test_bad_due_window_rejected():
    entry = make_indicator()
    entry["rule"] = dict(
        entry["rule"],
        on_missing={"priority": "high", "reason": "x", "action_required": "y", "due_within": "soon"},
    )

    with pytest.raises(CatalogLoadError):
        load_catalog([entry])


def test_load_from_json_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"version": "practice-2025-q3", "indicators": [make_indicator()]}))

    catalog = load_catalog(path)

    assert catalog.version == "practice-2025-q3"
    assert len(catalog) == 1


def test_invalid_json_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("{not json")

    with pytest.raises(CatalogLoadError):
        load_catalog(path)


def test_missing_file(tmp_path):
    with pytest.raises(CatalogLoadError):
        load_catalog(tmp_path / "absent.json")


def test_priority_order():
    ranked = sorted(["low", "critical", "medium", "high"], key=priority_rank)
    assert ranked == ["critical", "high", "medium", "low"]


def test_due_window_defaults_from_priority():
    outcome = Outcome(priority=Priority.MEDIUM, reason="r", action_required="a")
    assert outcome.window == DEFAULT_DUE_WITHIN[Priority.MEDIUM] == "1 month"

    explicit = Outcome(priority=Priority.MEDIUM, reason="r", action_required="a", due_within="2 weeks")
    assert explicit.window == "2 weeks"


def test_read_code_mapping():
    assert get_read_code_for_metric("smoking_status")["read_code"] == "1375."
    assert get_read_code_for_metric("unknown") is None
