"""
Careline - Database ORM Models
Patient record, call responses collected by outbound calls, and MediTask to-dos
"""
import uuid

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, JSON, Float, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Patient(Base):
    """Patient record with the clinical fields the rules engine reads"""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    nhs_number = Column(String(20), index=True)
    phone_number = Column(String(30), nullable=False)
    date_of_birth = Column(Date)
    notes = Column(Text)
    preferred_call_time = Column(String(50))

    # Clinical info (free text lists, matched by the vocabulary matcher)
    conditions = Column(JSON)
    medications = Column(JSON)
    allergies = Column(JSON)

    # Latest lab / clinical values
    hba1c_mmol_mol = Column(Float)
    hba1c_date = Column(DateTime(timezone=True))
    cholesterol_ldl = Column(Float)
    cholesterol_hdl = Column(Float)
    cholesterol_date = Column(DateTime(timezone=True))
    frailty_status = Column(String(20))  # none, mild, moderate, severe
    cha2ds2_vasc_score = Column(Integer)
    last_review_date = Column(DateTime(timezone=True))

    # End of life / care home
    dnacpr_status = Column(String(50))  # In Place, Not in Place, Unknown
    dnacpr_date = Column(DateTime(timezone=True))
    care_home_name = Column(String(200))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    responses = relationship("CallResponse", back_populates="patient", cascade="all, delete-orphan")
    tasks = relationship("MediTask", back_populates="patient")


class CallResponse(Base):
    """Health metrics collected during one outbound call (append-only)"""
    __tablename__ = "call_responses"

    id = Column(String(36), primary_key=True, default=_uuid)
    call_id = Column(String(36), index=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)

    weight_kg = Column(Float)
    height_cm = Column(Float)
    smoking_status = Column(String(20))  # never, former, current
    alcohol_units_per_week = Column(Integer)
    blood_pressure_systolic = Column(Integer)
    blood_pressure_diastolic = Column(Integer)
    pulse_rate = Column(Integer)
    is_carer = Column(Boolean)

    collected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    patient = relationship("Patient", back_populates="responses")


class MediTask(Base):
    """Trackable to-do created from a clinical action"""
    __tablename__ = "meditask_tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="pending")  # pending, in_progress, completed
    priority = Column(String(20), nullable=False, default="normal")  # low, normal, high, urgent
    assigned_to = Column(String(100))
    patient_id = Column(String(36), ForeignKey("patients.id"), index=True)

    # Source action
    indicator_id = Column(String(64), index=True)
    indicator_code = Column(String(32))

    due_date = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="tasks")
