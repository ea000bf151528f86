"""
Patient snapshot and observation models.

A PatientSnapshot is the read-only view of one patient's clinical state as held
by the Data Store. Observations are the time-stamped call responses (blood
pressure, smoking status, weight, ...) collected by outbound calls.

Every clinical field is optional. None means "unknown" and is never treated as
zero, negative or false by the engine.
"""
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

DateLike = Union[datetime, date]


class MetricType(str, Enum):
    """Metrics carried by an observation (one call response)."""
    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    PULSE_RATE = "pulse_rate"
    WEIGHT_KG = "weight_kg"
    HEIGHT_CM = "height_cm"
    SMOKING_STATUS = "smoking_status"
    ALCOHOL_UNITS_PER_WEEK = "alcohol_units_per_week"
    IS_CARER = "is_carer"


# Snapshot-sourced metrics, mapped to the field holding their recorded date
SNAPSHOT_FIELDS: Dict[str, Optional[str]] = {
    "hba1c_mmol_mol": "hba1c_date",
    "cholesterol_ldl": "cholesterol_date",
    "cholesterol_hdl": "cholesterol_date",
    "cha2ds2_vasc_score": None,
    "frailty_status": None,
    "dnacpr_status": "dnacpr_date",
    "care_home_name": None,
    "last_review_date": None,
}

OBSERVATION_METRICS = frozenset(m.value for m in MetricType)


def _clean_text(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class PatientSnapshot(BaseModel):
    """Normalized clinical state of one patient."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    patient_id: str
    date_of_birth: Optional[date] = None
    conditions: Optional[Tuple[str, ...]] = None
    medications: Optional[Tuple[str, ...]] = None

    hba1c_mmol_mol: Optional[float] = None
    hba1c_date: Optional[DateLike] = None
    cholesterol_ldl: Optional[float] = None
    cholesterol_hdl: Optional[float] = None
    cholesterol_date: Optional[DateLike] = None
    cha2ds2_vasc_score: Optional[int] = None
    frailty_status: Optional[str] = None

    dnacpr_status: Optional[str] = None
    dnacpr_date: Optional[DateLike] = None
    care_home_name: Optional[str] = None
    last_review_date: Optional[DateLike] = None

    @field_validator("patient_id", mode="before")
    @classmethod
    def _patient_id_as_text(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("frailty_status", mode="before")
    @classmethod
    def _normalize_frailty(cls, value: Any) -> Any:
        value = _clean_text(value)
        return value.lower() if isinstance(value, str) else value

    @field_validator("dnacpr_status", "care_home_name", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return _clean_text(value)

    def field_value(self, name: str) -> Any:
        return getattr(self, name)


class Observation(BaseModel):
    """One call response; any metric may be missing from a given record."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    patient_id: str
    collected_at: datetime
    blood_pressure_systolic: Optional[int] = None
    blood_pressure_diastolic: Optional[int] = None
    pulse_rate: Optional[int] = None
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    smoking_status: Optional[str] = None
    alcohol_units_per_week: Optional[int] = None
    is_carer: Optional[bool] = None

    @field_validator("patient_id", mode="before")
    @classmethod
    def _patient_id_as_text(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("smoking_status", mode="before")
    @classmethod
    def _normalize_smoking(cls, value: Any) -> Any:
        value = _clean_text(value)
        return value.lower() if isinstance(value, str) else value

    @field_validator("collected_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite drops tzinfo on the way back; stored times are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def value(self, metric: Union[MetricType, str]) -> Any:
        return getattr(self, MetricType(metric).value)


def as_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def age_on(dob: Optional[date], as_of: date) -> Optional[int]:
    """Whole years between date of birth and `as_of`."""
    if dob is None:
        return None
    years = as_of.year - dob.year
    if (as_of.month, as_of.day) < (dob.month, dob.day):
        years -= 1
    return years


def months_between(start: Optional[DateLike], as_of: date) -> Optional[int]:
    """Whole months elapsed since `start`; future dates count as 0."""
    start_date = as_date(start)
    if start_date is None:
        return None
    months = (as_of.year - start_date.year) * 12 + (as_of.month - start_date.month)
    if as_of.day < start_date.day:
        months -= 1
    return max(months, 0)
