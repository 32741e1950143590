from typing import Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import Role as RoleEnum


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    full_name: str
    role: RoleEnum
    is_active: bool
    must_change_password: bool
    created_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = ""
    role: RoleEnum
    temp_password: str = Field(min_length=12)


class DoctorUserCreate(BaseModel):
    email: EmailStr
    full_name: str
    temp_password: str = Field(min_length=12)
    specialization: str
    license_number: str
    bio: Optional[str] = None
