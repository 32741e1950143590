from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.ids import AppointmentId, DoctorId, PatientId
from app.db.session import commit_or_rollback
from app.models.appointment import Appointment, AppointmentStatus
from app.models.user import Role
from app.services.audit import log_event
from app.services.authorization import (
    AccessTarget,
    Action,
    Caller,
    DenialReason,
    Resource,
    can_set_appointment_status,
    require_access,
)
from app.services.errors import (
    AccessDenied,
    AppointmentNotFound,
    InvalidTransition,
    MissingScheduledTime,
)
from app.services.users import get_doctor, get_patient

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.requested: frozenset(
        {AppointmentStatus.scheduled, AppointmentStatus.cancelled}
    ),
    AppointmentStatus.scheduled: frozenset(
        {AppointmentStatus.confirmed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.confirmed: frozenset(
        {AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.cancelled: frozenset(),
    AppointmentStatus.no_show: frozenset(),
    AppointmentStatus.completed: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def is_allowed_transition(current: AppointmentStatus, requested: AppointmentStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: AppointmentStatus, requested: AppointmentStatus) -> None:
    if not is_allowed_transition(current, requested):
        raise InvalidTransition(current, requested)


def get_appointment(db: Session, appointment_id: AppointmentId) -> Appointment:
    appt = db.get(Appointment, appointment_id)
    if not appt or appt.deleted_at is not None:
        raise AppointmentNotFound(appointment_id)
    return appt


def read_appointment(db: Session, caller: Caller, appointment_id: AppointmentId) -> Appointment:
    appt = get_appointment(db, appointment_id)
    require_access(db, caller, Action.read, appt)
    return appt


def list_appointments(
    db: Session,
    caller: Caller,
    *,
    status: AppointmentStatus | None = None,
    patient_id: PatientId | None = None,
    doctor_id: DoctorId | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Appointment]:
    stmt = select(Appointment).where(Appointment.deleted_at.is_(None))
    if caller.role == Role.patient:
        stmt = stmt.where(Appointment.patient_id == caller.patient_id)
    elif caller.role == Role.doctor:
        stmt = stmt.where(Appointment.doctor_id == caller.doctor_id)
    if patient_id is not None:
        stmt = stmt.where(Appointment.patient_id == patient_id)
    if doctor_id is not None:
        stmt = stmt.where(Appointment.doctor_id == doctor_id)
    if status is not None:
        stmt = stmt.where(Appointment.status == status)
    stmt = (
        stmt.order_by(
            Appointment.scheduled_time.is_(None),
            Appointment.scheduled_time.asc(),
            Appointment.created_at.desc(),
        )
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt).unique())


def create_appointment(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId | None,
    doctor_id: DoctorId,
    reason: str | None = None,
    notes: str | None = None,
) -> Appointment:
    if patient_id is None:
        patient_id = caller.patient_id
    if patient_id is None:
        raise AccessDenied(DenialReason.role_not_permitted)
    patient = get_patient(db, patient_id)
    doctor = get_doctor(db, doctor_id)
    require_access(
        db,
        caller,
        Action.write,
        AccessTarget(Resource.appointment, patient_id=patient.id, doctor_id=doctor.id),
    )

    appt = Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        status=AppointmentStatus.requested,
        reason=reason,
        notes=notes,
        created_by_user_id=caller.user_id,
        updated_by_user_id=caller.user_id,
    )
    db.add(appt)
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="appointment.created",
        entity_type="appointment",
        entity_id=appt.id,
        summary=f"Patient {patient.full_name} requested appointment with Dr. {doctor.full_name}",
        after_obj=appt,
    )
    return appt


def transition_appointment(
    db: Session,
    caller: Caller,
    appointment_id: AppointmentId,
    new_status: AppointmentStatus,
    *,
    notes: str | None = None,
    scheduled_time: datetime | None = None,
) -> Appointment:
    appt = get_appointment(db, appointment_id)
    require_access(db, caller, Action.write, appt)
    decision = can_set_appointment_status(caller, new_status)
    if not decision:
        raise AccessDenied(decision.reason)

    current = appt.status
    validate_transition(current, new_status)
    if new_status == AppointmentStatus.scheduled:
        if scheduled_time is None:
            raise MissingScheduledTime()
        appt.scheduled_time = scheduled_time
    if new_status in (AppointmentStatus.cancelled, AppointmentStatus.no_show):
        appt.cancelled_at = datetime.now(timezone.utc)
        appt.cancelled_by_user_id = caller.user_id

    appt.status = new_status
    if notes:
        appt.notes = notes
    appt.updated_by_user_id = caller.user_id
    commit_or_rollback(db)

    if new_status == AppointmentStatus.scheduled:
        action = "appointment.scheduled"
        summary = f"Appointment scheduled for {scheduled_time.isoformat()}"
    elif new_status == AppointmentStatus.cancelled:
        action = "appointment.cancelled"
        summary = f"Appointment cancelled (was {current.value})"
    else:
        action = "appointment.status_changed"
        summary = f"Status changed from {current.value} to {new_status.value}"
    log_event(
        db,
        actor=caller,
        action=action,
        entity_type="appointment",
        entity_id=appt.id,
        summary=summary,
        before_data={"status": current.value},
        after_obj=appt,
    )
    return appt


def schedule_appointment(
    db: Session,
    caller: Caller,
    appointment_id: AppointmentId,
    *,
    scheduled_time: datetime | None,
    notes: str | None = None,
) -> Appointment:
    return transition_appointment(
        db,
        caller,
        appointment_id,
        AppointmentStatus.scheduled,
        notes=notes,
        scheduled_time=scheduled_time,
    )


def cancel_appointment(
    db: Session, caller: Caller, appointment_id: AppointmentId, *, notes: str | None = None
) -> Appointment:
    return transition_appointment(
        db, caller, appointment_id, AppointmentStatus.cancelled, notes=notes
    )
