import os
import tempfile
from datetime import date

# Must be set before careline.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "careline-tests", "careline.log")
os.environ["ENGINE_LOG_FILE"] = os.path.join(tempfile.gettempdir(), "careline-tests", "clinical_engine.log")
os.environ["QOF_CATALOG_PATH"] = ""
os.environ["EVALUATION_WORKERS"] = "1"

import pytest

from careline.db import Base, SessionLocal, engine
from careline.services.clinical_engine import (
    Observation,
    PatientSnapshot,
    RuleEvaluator,
    default_catalog,
    load_catalog,
)

AS_OF = date(2025, 6, 15)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def evaluator():
    return RuleEvaluator(as_of=AS_OF)


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def make_snapshot():
    def _make(patient_id="p1", **fields):
        return PatientSnapshot(patient_id=patient_id, **fields)
    return _make


@pytest.fixture
def make_observation():
    def _make(patient_id="p1", collected_at="2025-06-01T09:00:00", **metrics):
        return Observation(patient_id=patient_id, collected_at=collected_at, **metrics)
    return _make


def make_indicator(**overrides):
    """A small valid threshold indicator; pass keys to override."""
    entry = {
        "id": "test_bp",
        "code": "TST001",
        "name": "Test BP",
        "category": "cardiovascular",
        "target_percent": 80,
        "applicability": {"condition": ["Hypertension"]},
        "rule": {
            "kind": "threshold",
            "source": "observation",
            "metrics": ["blood_pressure_systolic"],
            "variants": [{"limits": {"blood_pressure_systolic": 140}}],
            "on_missing": {"priority": "high", "reason": "No reading", "action_required": "Record BP"},
            "on_breach": {
                "priority": "high",
                "reason": "BP {blood_pressure_systolic} above {target_blood_pressure_systolic}",
                "action_required": "Review",
            },
        },
    }
    entry.update(overrides)
    return entry


def make_flag(indicator_id, condition, priority, category="safety", framework="NICE"):
    return {
        "id": indicator_id,
        "code": indicator_id.upper(),
        "name": indicator_id,
        "category": category,
        "framework": framework,
        "target_percent": 80,
        "applicability": {"condition": [condition]},
        "rule": {
            "kind": "flag",
            "on_breach": {"priority": priority, "reason": "Has {condition_count} conditions", "action_required": "Review"},
        },
    }


@pytest.fixture
def build_catalog():
    def _build(*entries, version="test"):
        return load_catalog(list(entries), version=version)
    return _build


# ==================== Database ====================

@pytest.fixture
def db_session():
    from careline import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
