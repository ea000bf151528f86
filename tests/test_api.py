import json
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from careline.db import get_db
from careline.main import app
from careline.models import CallResponse, Patient
from careline.services import clinical_analysis
from careline.services.clinical_engine import default_catalog, priority_rank

from conftest import make_indicator


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        clinical_analysis.set_catalog(default_catalog())


@pytest.fixture
def practice(db_session):
    today = datetime.now(timezone.utc)
    hypertensive = Patient(
        name="Hyper Tension", phone_number="07700900010",
        date_of_birth=date(1960, 1, 1), conditions=["Hypertension"], medications=["Amlodipine 5mg"],
    )
    af = Patient(
        name="Atrial Fib", phone_number="07700900011",
        date_of_birth=date(1948, 5, 5), conditions=["Atrial fibrillation"],
        medications=["Bisoprolol 2.5mg"], cha2ds2_vasc_score=3,
    )
    asthmatic = Patient(
        name="Well Controlled", phone_number="07700900012",
        date_of_birth=date(1990, 7, 7), conditions=["Asthma"], medications=["Salbutamol inhaler"],
        last_review_date=today - timedelta(days=30),
    )
    db_session.add_all([hypertensive, af, asthmatic])
    db_session.commit()
    db_session.add(CallResponse(
        patient_id=hypertensive.id, blood_pressure_systolic=185, blood_pressure_diastolic=115,
        smoking_status="never", collected_at=today - timedelta(days=1),
    ))
    db_session.commit()
    return {"hypertensive": hypertensive.id, "af": af.id, "asthmatic": asthmatic.id}


# ==================== Health ====================

def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Careline"


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["catalog_version"] == "qof-2025-26"


# ==================== Clinical analysis ====================

def test_actions_sorted_by_priority(client, practice):
    body = client.get("/api/clinical-analysis/actions").json()

    ranks = [priority_rank(a["priority"]) for a in body["actions"]]
    assert ranks == sorted(ranks)
    assert body["stats"]["total"] == body["count"]
    assert body["partial"] is False
    assert datetime.fromisoformat(body["generated_at"]).tzinfo is not None

    critical = {(a["patient_id"], a["code"]) for a in body["actions"] if a["priority"] == "critical"}
    assert critical == {(practice["hypertensive"], "HYP008"), (practice["af"], "AF007")}


def test_actions_filtered(client, practice):
    body = client.get("/api/clinical-analysis/actions", params={"priority": "critical"}).json()

    assert body["count"] == 2
    assert all(a["priority"] == "critical" for a in body["actions"])
    assert body["stats"]["total"] > body["count"]


def test_invalid_filter_rejected(client):
    assert client.get("/api/clinical-analysis/actions", params={"priority": "urgent"}).status_code == 422


def test_patient_actions(client, practice):
    response = client.get(f"/api/clinical-analysis/patients/{practice['asthmatic']}/actions")

    assert response.status_code == 200
    codes = {a["code"] for a in response.json()["actions"]}
    assert "AST007" not in codes
    assert all(a["patient_id"] == practice["asthmatic"] for a in response.json()["actions"])


def test_unknown_patient_is_404(client, practice):
    assert client.get("/api/clinical-analysis/patients/nobody/actions").status_code == 404


def test_create_tasks_once(client, practice):
    action_id = f"{practice['af']}-af_anticoagulation"

    first = client.post("/api/clinical-analysis/tasks", json={"action_ids": [action_id], "created_by": "Nurse"})
    assert first.status_code == 200
    created = first.json()["created"]
    assert len(created) == 1
    assert created[0]["priority"] == "urgent"
    assert created[0]["indicator_code"] == "AF007"

    second = client.post("/api/clinical-analysis/tasks", json={"action_ids": [action_id, "gone-hf_acei"]})
    body = second.json()
    assert body["created"] == []
    assert len(body["already_open"]) == 1
    assert body["not_found"] == ["gone-hf_acei"]


def test_create_tasks_for_resolved_actions_is_404(client, practice):
    response = client.post(
        "/api/clinical-analysis/tasks",
        json={"action_ids": [f"{practice['asthmatic']}-ast_review"]},
    )
    assert response.status_code == 404


# ==================== QOF ====================

def test_list_indicators(client):
    body = client.get("/api/qof/indicators").json()
    assert body["count"] == len(default_catalog())

    nice = client.get("/api/qof/indicators", params={"framework": "NICE"}).json()
    assert {i["code"] for i in nice["indicators"]} == {"CG161", "NG5", "CG182"}

    hyp = next(i for i in body["indicators"] if i["id"] == "hyp_bp_control")
    assert hyp["variant_codes"] == ["HYP009"]
    assert hyp["read_code"] == "XaJ4k"


def test_coverage(client, practice):
    body = client.get("/api/qof/coverage").json()

    assert body["rating"] in {"On Target", "Needs Work", "Below Target"}
    by_id = {r["indicator_id"]: r for r in body["indicators"]}
    assert by_id["hyp_bp_control"]["eligible"] == 1
    assert by_id["hyp_bp_control"]["recorded"] == 1
    assert by_id["af_anticoagulation"]["recorded"] == 0
    assert by_id["af_anticoagulation"]["status"] == "poor"
    assert "nice_polypharmacy" not in by_id


def test_reload_catalog_from_file(client, tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"version": "practice-1", "indicators": [make_indicator()]}))
    monkeypatch.setattr(clinical_analysis, "QOF_CATALOG_PATH", str(path))

    response = client.post("/api/qof/catalog/reload")

    assert response.status_code == 200
    assert response.json() == {"success": True, "catalog_version": "practice-1", "indicators": 1}
    assert client.get("/api/qof/indicators").json()["count"] == 1


def test_invalid_reload_keeps_current_catalog(client, tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([make_indicator(), make_indicator()]))
    monkeypatch.setattr(clinical_analysis, "QOF_CATALOG_PATH", str(path))

    response = client.post("/api/qof/catalog/reload")

    assert response.status_code == 422
    assert response.json()["detail"]["problems"]
    assert client.get("/health").json()["catalog_version"] == "qof-2025-26"
