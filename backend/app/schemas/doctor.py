from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class DoctorUpdate(BaseModel):
    specialization: Optional[str] = None
    bio: Optional[str] = None


class DoctorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    specialization: str


class DoctorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    full_name: str
    specialization: str
    license_number: str
    bio: Optional[str] = None
    created_at: datetime
