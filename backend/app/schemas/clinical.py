from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.clinical import MedicalRecordType, ProcedureStatus, VisitStatus


class ProcedureCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    cost_minor: int
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    code: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    status: ProcedureStatus = ProcedureStatus.planned


class ProcedureUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    cost_minor: Optional[int] = None
    code: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ProcedureStatus] = None


class ProcedureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    visit_id: int
    patient_id: int
    doctor_id: int
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    cost_minor: int
    currency: str
    status: ProcedureStatus
    notes: Optional[str] = None


class VisitCreate(BaseModel):
    patient_id: int
    doctor_id: Optional[int] = None
    appointment_id: Optional[int] = None
    visit_date: datetime
    reason: Optional[str] = None
    notes: Optional[str] = None


class VisitUpdate(BaseModel):
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None


class VisitComplete(BaseModel):
    notes: Optional[str] = None


class VisitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    appointment_id: Optional[int] = None
    status: VisitStatus
    visit_date: datetime
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    currency: str
    total_cost_minor: int
    completed_at: Optional[datetime] = None
    completed_by_user_id: Optional[int] = None
    procedures: list[ProcedureOut] = []


class MedicalRecordCreate(BaseModel):
    patient_id: int
    doctor_id: Optional[int] = None
    visit_id: Optional[int] = None
    record_type: MedicalRecordType = MedicalRecordType.general_note
    title: Optional[str] = Field(default=None, max_length=200)
    content: str = Field(min_length=1)
    is_confidential: bool = False


class MedicalRecordUpdate(BaseModel):
    record_type: Optional[MedicalRecordType] = None
    title: Optional[str] = Field(default=None, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)
    is_confidential: Optional[bool] = None


class MedicalRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    visit_id: Optional[int] = None
    record_type: MedicalRecordType
    title: Optional[str] = None
    content: str
    is_confidential: bool
    created_at: datetime
    updated_at: datetime
