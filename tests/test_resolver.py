import pytest

from careline.services.clinical_engine import MetricType, resolve_latest
from careline.services.clinical_engine.resolver import group_by_patient, latest_value

BP = [MetricType.BLOOD_PRESSURE_SYSTOLIC, MetricType.BLOOD_PRESSURE_DIASTOLIC]


def test_picks_most_recent_record(make_observation):
    obs = [
        make_observation(collected_at="2025-03-01T09:00:00", pulse_rate=70),
        make_observation(collected_at="2025-05-01T09:00:00", pulse_rate=82),
        make_observation(collected_at="2025-04-01T09:00:00", pulse_rate=75),
    ]

    assert resolve_latest("p1", "pulse_rate", obs).pulse_rate == 82


def test_filters_by_patient(make_observation):
    obs = [
        make_observation(patient_id="p2", collected_at="2025-06-01T09:00:00", pulse_rate=99),
        make_observation(patient_id="p1", collected_at="2025-01-01T09:00:00", pulse_rate=60),
    ]

    assert latest_value("p1", MetricType.PULSE_RATE, obs) == 60


def test_skips_records_without_the_metric(make_observation):
    obs = [
        make_observation(collected_at="2025-01-01T09:00:00", smoking_status="never"),
        make_observation(collected_at="2025-06-01T09:00:00", weight_kg=70.0),
    ]

    assert latest_value("p1", "smoking_status", obs) == "never"


def test_joint_metrics_come_from_one_record(make_observation):
    obs = [
        make_observation(collected_at="2025-05-01T09:00:00", blood_pressure_systolic=150),
        make_observation(collected_at="2025-06-01T09:00:00", blood_pressure_diastolic=95),
    ]

    assert resolve_latest("p1", BP, obs) is None


def test_joint_metrics_resolved(make_observation):
    obs = [
        make_observation(collected_at="2025-04-01T09:00:00", blood_pressure_systolic=130, blood_pressure_diastolic=80),
        make_observation(collected_at="2025-06-01T09:00:00", blood_pressure_systolic=150),
    ]

    latest = resolve_latest("p1", BP, obs)

    assert (latest.blood_pressure_systolic, latest.blood_pressure_diastolic) == (130, 80)


def test_false_and_zero_are_values_not_gaps(make_observation):
    obs = [make_observation(is_carer=False, alcohol_units_per_week=0)]

    assert latest_value("p1", "is_carer", obs) is False
    assert latest_value("p1", "alcohol_units_per_week", obs) == 0


def test_no_qualifying_record(make_observation):
    assert resolve_latest("p1", "weight_kg", []) is None
    assert resolve_latest("p1", "weight_kg", [make_observation(pulse_rate=70)]) is None


def test_tie_keeps_first_record(make_observation):
    obs = [
        make_observation(collected_at="2025-06-01T09:00:00", pulse_rate=70),
        make_observation(collected_at="2025-06-01T09:00:00", pulse_rate=90),
    ]

    assert resolve_latest("p1", "pulse_rate", obs).pulse_rate == 70


def test_unknown_metric_rejected(make_observation):
    with pytest.raises(ValueError):
        resolve_latest("p1", "blood_sugar", [make_observation(pulse_rate=70)])


def test_group_by_patient_keeps_order(make_observation):
    obs = [
        make_observation(patient_id="a", pulse_rate=1),
        make_observation(patient_id="b", pulse_rate=2),
        make_observation(patient_id="a", pulse_rate=3),
    ]

    grouped = group_by_patient(obs)

    assert [o.pulse_rate for o in grouped["a"]] == [1, 3]
    assert [o.pulse_rate for o in grouped["b"]] == [2]
