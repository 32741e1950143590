from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PatientBase(BaseModel):
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_type: Optional[str] = Field(default=None, max_length=8)
    phone: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


class PatientCreate(PatientBase):
    email: EmailStr
    full_name: str = Field(min_length=1)
    temp_password: str = Field(min_length=12)


class PatientUpdate(PatientBase):
    pass


class PatientSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str


class PatientOut(PatientBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    full_name: str
    email: Optional[EmailStr] = None
    created_at: datetime
    updated_at: datetime
