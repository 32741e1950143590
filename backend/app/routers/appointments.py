from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.ids import AppointmentId
from app.db.session import get_db
from app.deps import get_caller
from app.models.appointment import AppointmentStatus
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentOut,
    AppointmentSchedule,
    AppointmentStatusUpdate,
)
from app.services.appointments import (
    cancel_appointment,
    create_appointment,
    list_appointments,
    read_appointment,
    schedule_appointment,
    transition_appointment,
)
from app.services.authorization import Caller

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return create_appointment(
        db,
        caller,
        patient_id=payload.patient_id,
        doctor_id=payload.doctor_id,
        reason=payload.reason,
        notes=payload.notes,
    )


@router.get("", response_model=list[AppointmentOut])
def list_all(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    status_filter: AppointmentStatus | None = Query(default=None, alias="status"),
    patient_id: int | None = Query(default=None),
    doctor_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_appointments(
        db,
        caller,
        status=status_filter,
        patient_id=patient_id,
        doctor_id=doctor_id,
        limit=limit,
        offset=offset,
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_one(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_appointment(db, caller, AppointmentId(appointment_id))


@router.put("/{appointment_id}/status", response_model=AppointmentOut)
def update_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return transition_appointment(
        db,
        caller,
        AppointmentId(appointment_id),
        payload.status,
        notes=payload.notes,
        scheduled_time=payload.scheduled_time,
    )


@router.post("/{appointment_id}/schedule", response_model=AppointmentOut)
def schedule(
    appointment_id: int,
    payload: AppointmentSchedule,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return schedule_appointment(
        db,
        caller,
        AppointmentId(appointment_id),
        scheduled_time=payload.scheduled_time,
        notes=payload.notes,
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
def cancel(
    appointment_id: int,
    payload: AppointmentCancel | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    notes = payload.notes if payload else None
    return cancel_appointment(db, caller, AppointmentId(appointment_id), notes=notes)
