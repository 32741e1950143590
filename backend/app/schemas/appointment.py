from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.models.appointment import AppointmentStatus
from app.schemas.doctor import DoctorSummary
from app.schemas.patient import PatientSummary


class AppointmentCreate(BaseModel):
    patient_id: Optional[int] = None
    doctor_id: int
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = None
    scheduled_time: Optional[datetime] = None


class AppointmentSchedule(BaseModel):
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    notes: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient: PatientSummary
    doctor: DoctorSummary
    status: AppointmentStatus
    scheduled_time: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
