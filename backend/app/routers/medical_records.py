from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.ids import MedicalRecordId
from app.db.session import get_db
from app.deps import get_caller
from app.models.clinical import MedicalRecordType
from app.schemas.clinical import MedicalRecordCreate, MedicalRecordOut, MedicalRecordUpdate
from app.services.authorization import Caller
from app.services.medical_records import (
    create_medical_record,
    delete_medical_record,
    list_medical_records,
    read_medical_record,
    search_medical_records,
    update_medical_record,
)

router = APIRouter(prefix="/medical-records", tags=["medical-records"])


@router.post("", response_model=MedicalRecordOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: MedicalRecordCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return create_medical_record(db, caller, **payload.model_dump())


@router.get("", response_model=list[MedicalRecordOut])
def list_all(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    patient_id: int | None = Query(default=None),
    record_type: MedicalRecordType | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_medical_records(
        db, caller, patient_id=patient_id, record_type=record_type, limit=limit, offset=offset
    )


@router.get("/search", response_model=list[MedicalRecordOut])
def search(
    q: str = Query(min_length=1),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    limit: int = Query(default=50, ge=1, le=200),
):
    return search_medical_records(db, caller, q, limit=limit)


@router.get("/{record_id}", response_model=MedicalRecordOut)
def get_one(
    record_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_medical_record(db, caller, MedicalRecordId(record_id))


@router.patch("/{record_id}", response_model=MedicalRecordOut)
def update(
    record_id: int,
    payload: MedicalRecordUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return update_medical_record(
        db, caller, MedicalRecordId(record_id), payload.model_dump(exclude_unset=True)
    )


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(
    record_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    delete_medical_record(db, caller, MedicalRecordId(record_id))
