from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.ids import AppointmentId, DoctorId, PatientId, ProcedureId, UserId, VisitId
from app.core.settings import settings
from app.db.session import commit_or_rollback
from app.models.appointment import AppointmentStatus
from app.models.clinical import Procedure, ProcedureStatus, Visit, VisitStatus
from app.models.user import Role
from app.services.appointments import get_appointment
from app.services.audit import log_event, snapshot_model
from app.services.authorization import (
    AccessTarget,
    Action,
    Caller,
    DenialReason,
    Resource,
    can_modify_visit,
    require_access,
)
from app.services.errors import (
    AccessDenied,
    AlreadyCompleted,
    AmountOutOfRange,
    CurrencyMismatch,
    InvalidTransition,
    InvariantViolation,
    ProcedureNotFound,
    VisitNotFound,
    VisitNotModifiable,
)
from app.services.events import EventBus, VisitCompleted
from app.services.money import Money, sum_money
from app.services.users import get_doctor, get_patient

logger = logging.getLogger("clinic_pms.visits")


def get_visit(db: Session, visit_id: VisitId) -> Visit:
    visit = db.get(Visit, visit_id)
    if not visit:
        raise VisitNotFound(visit_id)
    return visit


def read_visit(db: Session, caller: Caller, visit_id: VisitId) -> Visit:
    visit = get_visit(db, visit_id)
    require_access(db, caller, Action.read, visit)
    return visit


def visit_total_cost(visit: Visit) -> Money:
    return sum_money(
        (Money(procedure.cost_minor, procedure.currency) for procedure in visit.procedures),
        visit.currency,
    )


def _ensure_open(visit: Visit) -> None:
    if visit.is_closed:
        raise VisitNotModifiable()


def _require_modify(db: Session, caller: Caller, visit: Visit) -> None:
    decision = can_modify_visit(db, caller, visit)
    if not decision:
        logger.info(
            "Visit %s modification denied for user=%s reason=%s",
            visit.id,
            caller.user_id,
            decision.reason.value if decision.reason else None,
        )
        raise AccessDenied(decision.reason or DenialReason.role_not_permitted)


def list_visits(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId | None = None,
    status: VisitStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Visit]:
    stmt = select(Visit)
    if caller.role == Role.patient:
        stmt = stmt.where(Visit.patient_id == caller.patient_id)
    elif caller.role == Role.doctor:
        stmt = stmt.where(Visit.doctor_id == caller.doctor_id)
    elif caller.role != Role.admin:
        raise AccessDenied(DenialReason.role_not_permitted)
    if patient_id is not None:
        stmt = stmt.where(Visit.patient_id == patient_id)
    if status is not None:
        stmt = stmt.where(Visit.status == status)
    stmt = stmt.order_by(Visit.visit_date.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).unique())


def create_visit(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId,
    doctor_id: DoctorId | None = None,
    visit_date: datetime,
    appointment_id: AppointmentId | None = None,
    reason: str | None = None,
    notes: str | None = None,
    currency: str | None = None,
) -> Visit:
    if doctor_id is None:
        doctor_id = caller.doctor_id
    if doctor_id is None:
        raise AccessDenied(DenialReason.role_not_permitted)
    patient = get_patient(db, patient_id)
    doctor = get_doctor(db, doctor_id)
    require_access(
        db,
        caller,
        Action.write,
        AccessTarget(Resource.visit, patient_id=patient.id, doctor_id=doctor.id),
    )

    if appointment_id is not None:
        appt = get_appointment(db, appointment_id)
        if appt.patient_id != patient.id or appt.doctor_id != doctor.id:
            raise InvariantViolation("Appointment does not belong to this patient and doctor")
        if appt.status in (AppointmentStatus.cancelled, AppointmentStatus.no_show):
            raise InvariantViolation(f"Appointment is {appt.status.value}")
        if appt.visit is not None:
            raise InvariantViolation("Appointment already has a visit")

    visit = Visit(
        patient_id=patient.id,
        doctor_id=doctor.id,
        appointment_id=appointment_id,
        status=VisitStatus.scheduled,
        visit_date=visit_date,
        reason=reason,
        notes=notes,
        currency=(currency or settings.currency).upper(),
        created_by_user_id=caller.user_id,
        updated_by_user_id=caller.user_id,
    )
    db.add(visit)
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="visit.created",
        entity_type="visit",
        entity_id=visit.id,
        summary=f"Visit opened for patient {patient.id} with doctor {doctor.id}",
        after_obj=visit,
    )
    return visit


def update_visit(
    db: Session,
    caller: Caller,
    visit_id: VisitId,
    *,
    notes: str | None = None,
    diagnosis: str | None = None,
    reason: str | None = None,
) -> Visit:
    visit = get_visit(db, visit_id)
    _require_modify(db, caller, visit)
    _ensure_open(visit)
    before_data = snapshot_model(visit)
    if notes is not None:
        visit.notes = notes
    if diagnosis is not None:
        visit.diagnosis = diagnosis
    if reason is not None:
        visit.reason = reason
    visit.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="visit.updated",
        entity_type="visit",
        entity_id=visit.id,
        summary="Visit details updated",
        before_data=before_data,
        after_obj=visit,
    )
    return visit


def cancel_visit(db: Session, caller: Caller, visit_id: VisitId) -> Visit:
    visit = get_visit(db, visit_id)
    _require_modify(db, caller, visit)
    if visit.status != VisitStatus.scheduled:
        raise InvalidTransition(visit.status, VisitStatus.cancelled)
    visit.status = VisitStatus.cancelled
    visit.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="visit.cancelled",
        entity_type="visit",
        entity_id=visit.id,
        summary="Visit cancelled",
    )
    return visit


def complete_visit(
    db: Session,
    caller: Caller,
    visit_id: VisitId,
    *,
    notes: str | None = None,
    events: EventBus | None = None,
) -> Visit:
    visit = get_visit(db, visit_id)
    _require_modify(db, caller, visit)
    if visit.status == VisitStatus.completed:
        raise AlreadyCompleted()
    if visit.status != VisitStatus.scheduled:
        raise InvalidTransition(visit.status, VisitStatus.completed)

    total_cost = visit_total_cost(visit)
    now = datetime.now(timezone.utc)
    # Guarded on the current status so two concurrent completions cannot both win.
    result = db.execute(
        update(Visit)
        .where(Visit.id == visit.id, Visit.status == VisitStatus.scheduled)
        .values(
            status=VisitStatus.completed,
            completed_at=now,
            completed_by_user_id=caller.user_id,
            notes=notes if notes is not None else visit.notes,
            updated_by_user_id=caller.user_id,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyCompleted()
    commit_or_rollback(db)
    db.refresh(visit)

    log_event(
        db,
        actor=caller,
        action="visit.completed",
        entity_type="visit",
        entity_id=visit.id,
        summary=f"Visit completed, total {total_cost.format()}",
        after_data={"status": visit.status.value, "total_cost_minor": total_cost.amount_minor},
    )
    if events is not None:
        events.publish(
            VisitCompleted(
                visit_id=VisitId(visit.id),
                patient_id=PatientId(visit.patient_id),
                doctor_id=DoctorId(visit.doctor_id),
                total_cost=total_cost,
                completed_by=UserId(caller.user_id),
            )
        )
    return visit


def get_procedure(db: Session, procedure_id: ProcedureId) -> Procedure:
    procedure = db.get(Procedure, procedure_id)
    if not procedure:
        raise ProcedureNotFound(procedure_id)
    return procedure


def read_procedure(db: Session, caller: Caller, procedure_id: ProcedureId) -> Procedure:
    procedure = get_procedure(db, procedure_id)
    require_access(db, caller, Action.read, procedure)
    return procedure


def add_procedure(
    db: Session,
    caller: Caller,
    visit_id: VisitId,
    *,
    name: str,
    cost_minor: int,
    currency: str | None = None,
    code: str | None = None,
    description: str | None = None,
    notes: str | None = None,
    status: ProcedureStatus = ProcedureStatus.planned,
) -> Procedure:
    visit = get_visit(db, visit_id)
    _require_modify(db, caller, visit)
    _ensure_open(visit)
    if cost_minor < 0:
        raise AmountOutOfRange("Procedure cost cannot be negative")
    currency = (currency or visit.currency).upper()
    if currency != visit.currency:
        raise CurrencyMismatch(visit.currency, currency)

    procedure = Procedure(
        visit_id=visit.id,
        patient_id=visit.patient_id,
        doctor_id=visit.doctor_id,
        name=name,
        code=code,
        description=description,
        cost_minor=cost_minor,
        currency=currency,
        status=status,
        notes=notes,
        created_by_user_id=caller.user_id,
        updated_by_user_id=caller.user_id,
    )
    visit.procedures.append(procedure)
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="procedure.created",
        entity_type="procedure",
        entity_id=procedure.id,
        summary=f"Procedure {name} added to visit {visit.id}",
        after_obj=procedure,
    )
    return procedure


def update_procedure(
    db: Session,
    caller: Caller,
    procedure_id: ProcedureId,
    changes: dict,
) -> Procedure:
    procedure = get_procedure(db, procedure_id)
    visit = get_visit(db, procedure.visit_id)
    _require_modify(db, caller, visit)
    _ensure_open(visit)
    if changes.get("cost_minor") is not None and changes["cost_minor"] < 0:
        raise AmountOutOfRange("Procedure cost cannot be negative")
    before_data = snapshot_model(procedure)
    for key, value in changes.items():
        if value is not None:
            setattr(procedure, key, value)
    procedure.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="procedure.updated",
        entity_type="procedure",
        entity_id=procedure.id,
        summary="Procedure updated",
        before_data=before_data,
        after_obj=procedure,
    )
    return procedure


def remove_procedure(db: Session, caller: Caller, procedure_id: ProcedureId) -> None:
    procedure = get_procedure(db, procedure_id)
    visit = get_visit(db, procedure.visit_id)
    _require_modify(db, caller, visit)
    _ensure_open(visit)
    before_data = snapshot_model(procedure)
    visit.procedures.remove(procedure)
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="procedure.deleted",
        entity_type="procedure",
        entity_id=procedure_id,
        summary=f"Procedure removed from visit {visit.id}",
        before_data=before_data,
    )
