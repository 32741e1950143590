from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.ids import PatientId
from app.db.session import get_db
from app.deps import get_caller, require_admin
from app.schemas.patient import PatientOut, PatientUpdate
from app.services.authorization import Caller
from app.services.users import (
    list_patients,
    read_patient,
    soft_delete_patient,
    update_patient_profile,
)

router = APIRouter(prefix="/patients", tags=["patients"])


@router.get("", response_model=list[PatientOut])
def get_patients(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_patients(db, caller, limit=limit, offset=offset)


@router.get("/me", response_model=PatientOut)
def get_own_profile(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    if caller.patient_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return read_patient(db, caller, caller.patient_id)


@router.get("/{patient_id}", response_model=PatientOut)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_patient(db, caller, PatientId(patient_id))


@router.patch("/{patient_id}", response_model=PatientOut)
def update_patient(
    patient_id: int,
    payload: PatientUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return update_patient_profile(
        db, caller, PatientId(patient_id), payload.model_dump(exclude_unset=True)
    )


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    _admin=Depends(require_admin),
    caller: Caller = Depends(get_caller),
):
    soft_delete_patient(db, actor=caller, patient_id=PatientId(patient_id))
