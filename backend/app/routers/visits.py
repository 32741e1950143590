from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.ids import VisitId
from app.db.session import get_db
from app.deps import get_caller, get_event_bus
from app.models.clinical import VisitStatus
from app.schemas.clinical import (
    ProcedureCreate,
    ProcedureOut,
    VisitComplete,
    VisitCreate,
    VisitOut,
    VisitUpdate,
)
from app.services.authorization import Caller
from app.services.events import EventBus
from app.services.visits import (
    add_procedure,
    cancel_visit,
    complete_visit,
    create_visit,
    list_visits,
    read_visit,
    update_visit,
)

router = APIRouter(prefix="/visits", tags=["visits"])


@router.post("", response_model=VisitOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: VisitCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return create_visit(
        db,
        caller,
        patient_id=payload.patient_id,
        doctor_id=payload.doctor_id,
        visit_date=payload.visit_date,
        appointment_id=payload.appointment_id,
        reason=payload.reason,
        notes=payload.notes,
    )


@router.get("", response_model=list[VisitOut])
def list_all(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    patient_id: int | None = Query(default=None),
    status_filter: VisitStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_visits(
        db, caller, patient_id=patient_id, status=status_filter, limit=limit, offset=offset
    )


@router.get("/{visit_id}", response_model=VisitOut)
def get_one(
    visit_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_visit(db, caller, VisitId(visit_id))


@router.patch("/{visit_id}", response_model=VisitOut)
def update(
    visit_id: int,
    payload: VisitUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return update_visit(
        db,
        caller,
        VisitId(visit_id),
        notes=payload.notes,
        diagnosis=payload.diagnosis,
        reason=payload.reason,
    )


@router.post("/{visit_id}/complete", response_model=VisitOut)
def complete(
    visit_id: int,
    payload: VisitComplete | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    events: EventBus = Depends(get_event_bus),
):
    notes = payload.notes if payload else None
    return complete_visit(db, caller, VisitId(visit_id), notes=notes, events=events)


@router.post("/{visit_id}/cancel", response_model=VisitOut)
def cancel(
    visit_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return cancel_visit(db, caller, VisitId(visit_id))


@router.get("/{visit_id}/procedures", response_model=list[ProcedureOut])
def list_procedures(
    visit_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_visit(db, caller, VisitId(visit_id)).procedures


@router.post(
    "/{visit_id}/procedures", response_model=ProcedureOut, status_code=status.HTTP_201_CREATED
)
def create_procedure(
    visit_id: int,
    payload: ProcedureCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return add_procedure(db, caller, VisitId(visit_id), **payload.model_dump())
