"""
Patient Store
Reads patients and call responses from the database and hands them to the
clinical engine as immutable snapshots and observations.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models import CallResponse, Patient
from .clinical_engine import Observation, PatientSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = (
    "date_of_birth", "conditions", "medications",
    "hba1c_mmol_mol", "hba1c_date",
    "cholesterol_ldl", "cholesterol_hdl", "cholesterol_date",
    "cha2ds2_vasc_score", "frailty_status",
    "dnacpr_status", "dnacpr_date", "care_home_name",
    "last_review_date",
)

OBSERVATION_COLUMNS = (
    "blood_pressure_systolic", "blood_pressure_diastolic", "pulse_rate",
    "weight_kg", "height_cm", "smoking_status",
    "alcohol_units_per_week", "is_carer",
)


def patient_to_snapshot(patient: Patient) -> PatientSnapshot:
    """Raises pydantic.ValidationError if a stored value has the wrong shape."""
    data: Dict[str, Any] = {"patient_id": patient.id}
    for column in SNAPSHOT_COLUMNS:
        data[column] = getattr(patient, column)
    return PatientSnapshot.model_validate(data)


def response_to_observation(response: CallResponse) -> Observation:
    data: Dict[str, Any] = {"patient_id": response.patient_id, "collected_at": response.collected_at}
    for column in OBSERVATION_COLUMNS:
        data[column] = getattr(response, column)
    return Observation.model_validate(data)


class PatientStore:
    """
    Data access for the clinical engine.
    Everything is loaded up front; the engine never touches the session.
    """

    def __init__(self, db: Session):
        self.db = db

    async def get_snapshots(self, patient_ids: Optional[Iterable[str]] = None) -> List[PatientSnapshot]:
        query = self.db.query(Patient)
        if patient_ids is not None:
            query = query.filter(Patient.id.in_(list(patient_ids)))
        patients = query.order_by(Patient.created_at, Patient.id).all()
        logger.debug(f"Loaded {len(patients)} patient snapshots")
        return [patient_to_snapshot(p) for p in patients]

    async def get_snapshot(self, patient_id: str) -> Optional[PatientSnapshot]:
        patient = self.db.query(Patient).filter(Patient.id == str(patient_id)).first()
        if patient is None:
            return None
        return patient_to_snapshot(patient)

    async def get_observations(self, patient_ids: Optional[Iterable[str]] = None) -> List[Observation]:
        """Call responses ordered oldest first; the resolver picks the latest itself."""
        query = self.db.query(CallResponse)
        if patient_ids is not None:
            query = query.filter(CallResponse.patient_id.in_(list(patient_ids)))
        responses = query.order_by(CallResponse.collected_at, CallResponse.id).all()
        logger.debug(f"Loaded {len(responses)} call responses")
        return [response_to_observation(r) for r in responses]
