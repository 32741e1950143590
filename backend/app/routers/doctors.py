from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.ids import DoctorId
from app.db.session import get_db
from app.deps import get_caller, get_current_user
from app.schemas.doctor import DoctorOut, DoctorSummary, DoctorUpdate
from app.services.authorization import Caller
from app.services.users import list_doctors, read_doctor, update_doctor_profile

router = APIRouter(prefix="/doctors", tags=["doctors"])


@router.get("", response_model=list[DoctorSummary])
def get_doctors(
    db: Session = Depends(get_db),
    _user=Depends(get_current_user),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_doctors(db, limit=limit, offset=offset)


@router.get("/{doctor_id}", response_model=DoctorOut)
def get_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_doctor(db, caller, DoctorId(doctor_id))


@router.patch("/{doctor_id}", response_model=DoctorOut)
def update_doctor(
    doctor_id: int,
    payload: DoctorUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return update_doctor_profile(
        db, caller, DoctorId(doctor_id), payload.model_dump(exclude_unset=True)
    )
