from datetime import date

import pytest

from careline.services.clinical_engine import InvalidThresholdComparison, Priority, Trigger, evaluate_indicator
from careline.services.clinical_engine.evaluator import MEDICATION_LIST_MISSING

from conftest import AS_OF, make_indicator

DOB_AGE_65 = date(1960, 1, 1)
DOB_AGE_85 = date(1940, 1, 1)


# ==================== Hypertension ====================

def test_hypertension_without_reading_needs_bp_check(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)

    action = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, [])

    assert action.code == "HYP008"
    assert action.priority is Priority.HIGH
    assert action.due_within == "14 days"
    assert action.trigger is Trigger.MISSING_DATA
    assert action.id == "p1-hyp_bp_control"


def test_hypertension_severe_reading_is_critical(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=185, blood_pressure_diastolic=115)]

    action = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs)

    assert action.priority is Priority.CRITICAL
    assert action.due_within == "24 hours"
    assert action.trigger is Trigger.OUT_OF_TARGET
    assert action.reason == "BP 185/115 exceeds target <=140/90"
    assert action.action_required.startswith("URGENT")


def test_hypertension_diastolic_alone_escalates(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=150, blood_pressure_diastolic=110)]

    action = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs)

    assert action.priority is Priority.CRITICAL


def test_hypertension_moderately_high_reading(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=150, blood_pressure_diastolic=85)]

    action = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs)

    assert action.priority is Priority.HIGH
    assert action.due_within == "7 days"
    assert action.code == "HYP008"


def test_hypertension_controlled_is_silent(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=132, blood_pressure_diastolic=78)]

    assert evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs) is None


def test_target_boundary_is_inclusive(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=140, blood_pressure_diastolic=90)]

    assert evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs) is None


def test_over_80_uses_relaxed_target_and_code(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Essential hypertension"], date_of_birth=DOB_AGE_85)
    indicator = catalog.get("hyp_bp_control")

    controlled = [make_observation(blood_pressure_systolic=145, blood_pressure_diastolic=85)]
    assert evaluator.evaluate_indicator(indicator, patient, controlled) is None

    raised = [make_observation(blood_pressure_systolic=155, blood_pressure_diastolic=85)]
    action = evaluator.evaluate_indicator(indicator, patient, raised)
    assert action.code == "HYP009"
    assert action.reason == "BP 155/85 exceeds target <=150/90"


def test_unknown_age_uses_default_target(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"])
    obs = [make_observation(blood_pressure_systolic=145, blood_pressure_diastolic=85)]

    action = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs)

    assert action.code == "HYP008"


def test_latest_complete_reading_is_used(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [
        make_observation(collected_at="2025-01-01T10:00:00", blood_pressure_systolic=190, blood_pressure_diastolic=100),
        make_observation(collected_at="2025-05-01T10:00:00", blood_pressure_systolic=130, blood_pressure_diastolic=80),
        # Newer but incomplete: systolic only, must not be paired with an older diastolic
        make_observation(collected_at="2025-06-01T10:00:00", blood_pressure_systolic=200),
    ]

    assert evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, obs) is None


def test_not_applicable_without_condition(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Asthma"], date_of_birth=DOB_AGE_65)

    assert evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, []) is None


def test_unknown_condition_list_is_not_applicable(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=None, date_of_birth=DOB_AGE_65)

    assessment = evaluator.assess(catalog.get("hyp_bp_control"), patient, [])

    assert not assessment.applicable
    assert assessment.action is None


# ==================== Diabetes ====================

def test_frail_diabetic_within_relaxed_target(catalog, evaluator, make_snapshot):
    patient = make_snapshot(
        conditions=["Type 2 diabetes"], frailty_status="Severe",
        hba1c_mmol_mol=70, hba1c_date=date(2025, 4, 1),
    )

    assert evaluator.evaluate_indicator(catalog.get("dm_hba1c_control"), patient, []) is None


def test_frail_diabetic_above_relaxed_target_is_high(catalog, evaluator, make_snapshot):
    patient = make_snapshot(
        conditions=["Type 2 diabetes"], frailty_status="severe",
        hba1c_mmol_mol=80, hba1c_date=date(2025, 4, 1),
    )

    action = evaluator.evaluate_indicator(catalog.get("dm_hba1c_control"), patient, [])

    assert action.code == "DM012"
    assert action.priority is Priority.HIGH
    assert action.due_within == "14 days"
    assert action.reason == "HbA1c 80 mmol/mol exceeds target <=75"


def test_very_high_hba1c_is_critical(catalog, evaluator, make_snapshot):
    patient = make_snapshot(
        conditions=["Type 2 diabetes"], frailty_status="severe",
        hba1c_mmol_mol=90, hba1c_date=date(2025, 4, 1),
    )

    action = evaluator.evaluate_indicator(catalog.get("dm_hba1c_control"), patient, [])

    assert action.priority is Priority.CRITICAL
    assert action.due_within == "7 days"


def test_non_frail_diabetic_uses_standard_target(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Type 2 diabetes"], hba1c_mmol_mol=70, hba1c_date=date(2025, 4, 1))

    action = evaluator.evaluate_indicator(catalog.get("dm_hba1c_control"), patient, [])

    assert action.code == "DM006"
    assert action.reason == "HbA1c 70 mmol/mol exceeds target <=58"


def test_missing_hba1c(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Type 1 diabetes"])

    action = evaluator.evaluate_indicator(catalog.get("dm_hba1c_control"), patient, [])

    assert action.trigger is Trigger.MISSING_DATA
    assert action.reason == "No HbA1c on record"
    assert action.priority is Priority.HIGH


def test_stale_hba1c_is_reported_once(catalog, evaluator, make_snapshot):
    # Stale and far above target: only the stale-data action is emitted
    patient = make_snapshot(conditions=["Type 2 diabetes"], hba1c_mmol_mol=95, hba1c_date=date(2024, 10, 1))

    assessment = evaluator.assess(catalog.get("dm_hba1c_control"), patient, [])

    assert assessment.action.trigger is Trigger.STALE_DATA
    assert assessment.action.priority is Priority.HIGH
    assert assessment.action.reason == "HbA1c last checked 8 months ago"
    assert not assessment.recorded


def test_statin_code_depends_on_cvd_history(catalog, evaluator, make_snapshot):
    with_cvd = make_snapshot(
        conditions=["Type 2 diabetes", "Myocardial infarction 2019"],
        medications=["Metformin 500mg"], date_of_birth=DOB_AGE_65,
    )
    without_cvd = make_snapshot(conditions=["Type 2 diabetes"], medications=["Metformin 500mg"], date_of_birth=DOB_AGE_65)

    secondary = evaluator.evaluate_indicator(catalog.get("dm_statin_secondary"), with_cvd, [])
    assert secondary.code == "DM035"
    assert secondary.priority is Priority.HIGH
    assert evaluator.evaluate_indicator(catalog.get("dm_statin_primary"), with_cvd, []) is None

    primary = evaluator.evaluate_indicator(catalog.get("dm_statin_primary"), without_cvd, [])
    assert primary.code == "DM034"
    assert primary.priority is Priority.MEDIUM
    assert primary.reason == "Diabetic aged 65, not on statin"


def test_nystatin_is_not_a_statin(catalog, evaluator, make_snapshot):
    patient = make_snapshot(
        conditions=["Angina"], medications=["Nystatin oral suspension"], date_of_birth=DOB_AGE_65,
    )

    action = evaluator.evaluate_indicator(catalog.get("chol_statin"), patient, [])

    assert action.code == "CHOL003"


# ==================== Atrial fibrillation ====================

def test_af_without_anticoagulation_is_critical(catalog, evaluator, make_snapshot):
    patient = make_snapshot(
        conditions=["Atrial Fibrillation"], cha2ds2_vasc_score=3, medications=["Bisoprolol 2.5mg"],
    )

    action = evaluator.evaluate_indicator(catalog.get("af_anticoagulation"), patient, [])

    assert action.code == "AF007"
    assert action.priority is Priority.CRITICAL
    assert action.due_within == "3 days"
    assert "score 3" in action.reason


def test_af_on_anticoagulant_is_silent(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Atrial fibrillation"], cha2ds2_vasc_score=3, medications=["APIXABAN 5mg"])

    assert evaluator.evaluate_indicator(catalog.get("af_anticoagulation"), patient, []) is None


def test_af_low_risk_is_silent(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Atrial fibrillation"], cha2ds2_vasc_score=1, medications=[])

    assert evaluator.evaluate_indicator(catalog.get("af_anticoagulation"), patient, []) is None


def test_af_without_risk_score_asks_for_one(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Atrial fibrillation"], date_of_birth=DOB_AGE_85, medications=[])

    action = evaluator.evaluate_indicator(catalog.get("af_anticoagulation"), patient, [])

    assert action.trigger is Trigger.MISSING_DATA
    assert action.priority is Priority.HIGH
    assert "CHA2DS2-VASc" in action.reason


def test_unknown_medication_list_is_missing_data(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Atrial fibrillation"], cha2ds2_vasc_score=4, medications=None)

    action = evaluator.evaluate_indicator(catalog.get("af_anticoagulation"), patient, [])

    assert action.trigger is Trigger.MISSING_DATA
    assert action.reason == MEDICATION_LIST_MISSING.reason


# ==================== Reviews, flags, categories ====================

def test_overdue_asthma_review(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Asthma"], last_review_date=date(2024, 1, 10))

    action = evaluator.evaluate_indicator(catalog.get("ast_review"), patient, [])

    assert action.code == "AST007"
    assert action.priority is Priority.MEDIUM
    assert action.reason == "Last review 17 months ago"


def test_recent_review_is_silent(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["COPD"], last_review_date=date(2025, 1, 10))

    assert evaluator.evaluate_indicator(catalog.get("copd_review"), patient, []) is None


def test_falls_risk_escalates_for_severe_frailty(catalog, evaluator, make_snapshot):
    meds = [f"Drug {i}" for i in range(6)]
    moderate = make_snapshot(frailty_status="moderate", medications=meds)
    severe = make_snapshot(frailty_status="severe", medications=meds)
    indicator = catalog.get("nice_falls")

    assert evaluator.evaluate_indicator(indicator, moderate, []).priority is Priority.MEDIUM
    action = evaluator.evaluate_indicator(indicator, severe, [])
    assert action.priority is Priority.HIGH
    assert action.due_within == "2 weeks"
    assert action.reason == "Frail patient (severe) on 6 medications"


def test_falls_risk_needs_known_frailty(catalog, evaluator, make_snapshot):
    patient = make_snapshot(medications=[f"Drug {i}" for i in range(8)])

    assert evaluator.evaluate_indicator(catalog.get("nice_falls"), patient, []) is None


def test_dnacpr_status_membership(catalog, evaluator, make_snapshot):
    indicator = catalog.get("eol_dnacpr")

    unknown = make_snapshot(care_home_name="Oakview Lodge", dnacpr_status="Unknown")
    action = evaluator.evaluate_indicator(indicator, unknown, [])
    assert action.reason == "DNACPR status is 'Unknown'"

    recorded = make_snapshot(care_home_name="Oakview Lodge", dnacpr_status="in place")
    assert evaluator.evaluate_indicator(indicator, recorded, []) is None

    missing = make_snapshot(frailty_status="severe")
    assert evaluator.evaluate_indicator(indicator, missing, []).trigger is Trigger.MISSING_DATA


def test_current_smoker_offered_cessation(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(date_of_birth=DOB_AGE_65)
    indicator = catalog.get("smok_cessation")

    smoker = [make_observation(smoking_status="Current")]
    action = evaluator.evaluate_indicator(indicator, patient, smoker)
    assert action.code == "SMOK004"
    assert action.reason == "Current smoker (status: current)"

    assert evaluator.evaluate_indicator(indicator, patient, [make_observation(smoking_status="former")]) is None
    # No status recorded: nothing to offer yet, SMOK002 covers recording
    assert evaluator.evaluate_indicator(indicator, patient, []) is None


def test_bmi_needs_weight_and_height_from_one_call(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(date_of_birth=DOB_AGE_65)
    obs = [
        make_observation(collected_at="2023-03-01T09:00:00", weight_kg=80.0, height_cm=175.0),
        make_observation(collected_at="2025-06-01T09:00:00", weight_kg=82.0),
    ]

    action = evaluator.evaluate_indicator(catalog.get("bmi_recording"), patient, obs)

    assert action.trigger is Trigger.STALE_DATA
    assert action.priority is Priority.LOW
    assert action.due_within == "3 months"


# ==================== General properties ====================

def test_evaluation_is_deterministic(catalog, evaluator, make_snapshot, make_observation):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)
    obs = [make_observation(blood_pressure_systolic=150, blood_pressure_diastolic=95)]
    indicator = catalog.get("hyp_bp_control")

    first = evaluator.evaluate_indicator(indicator, patient, obs)
    second = evaluator.evaluate_indicator(indicator, patient, obs)

    assert first == second
    assert first.to_record() == second.to_record()


def test_action_record_is_flat_json(catalog, evaluator, make_snapshot):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)

    record = evaluator.evaluate_indicator(catalog.get("hyp_bp_control"), patient, []).to_record()

    assert record["priority"] == "high"
    assert record["framework"] == "QOF"
    assert record["trigger"] == "missing_data"
    assert all(isinstance(v, str) for v in record.values())


def test_categorical_rule_on_numeric_field_raises(build_catalog, evaluator, make_snapshot):
    catalog = build_catalog(make_indicator(
        id="bad_category",
        applicability={"condition": ["Atrial fibrillation"]},
        rule={
            "kind": "categorical",
            "metrics": ["cha2ds2_vasc_score"],
            "variants": [{"allowed": ["low"]}],
            "on_breach": {"priority": "high", "reason": "Score {value}", "action_required": "Review"},
        },
    ))
    patient = make_snapshot(conditions=["Atrial fibrillation"], cha2ds2_vasc_score=3)

    with pytest.raises(InvalidThresholdComparison) as excinfo:
        evaluator.evaluate_indicator(catalog.get("bad_category"), patient, [])
    assert excinfo.value.indicator_id == "bad_category"
    assert excinfo.value.metric == "cha2ds2_vasc_score"


def test_module_level_evaluate_indicator(catalog, make_snapshot):
    patient = make_snapshot(conditions=["Hypertension"], date_of_birth=DOB_AGE_65)

    action = evaluate_indicator(catalog.get("hyp_bp_control"), patient, [], as_of=AS_OF)

    assert action.code == "HYP008"
