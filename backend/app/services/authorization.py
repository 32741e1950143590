"""Role-based access decisions for clinic aggregates.

The policy is a flat table per role: which actions a role may take on which
resource type, plus the ownership rule that applies. ``decide`` is pure and
works on ids only; ``authorize`` adds the one lookup the table needs (the
doctor/patient treatment relationship).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.ids import DoctorId, PatientId, UserId
from app.models.appointment import Appointment, AppointmentStatus
from app.models.clinical import MedicalRecord, Procedure, Visit
from app.models.doctor import Doctor
from app.models.invoice import Invoice
from app.models.patient import Patient
from app.models.user import Role, User
from app.services.errors import AccessDenied

logger = logging.getLogger("clinic_pms.authz")


class Action(str, enum.Enum):
    read = "READ"
    write = "WRITE"
    pay = "PAY"


class Resource(str, enum.Enum):
    patient = "PATIENT"
    doctor = "DOCTOR"
    appointment = "APPOINTMENT"
    visit = "VISIT"
    procedure = "PROCEDURE"
    medical_record = "MEDICAL_RECORD"
    invoice = "INVOICE"
    report = "REPORT"


class DenialReason(str, enum.Enum):
    not_owner = "NOT_OWNER"
    no_treatment_relationship = "NO_TREATMENT_RELATIONSHIP"
    role_not_permitted = "ROLE_NOT_PERMITTED"


@dataclass(frozen=True)
class Caller:
    user_id: UserId
    role: Role
    email: str | None = None
    patient_id: PatientId | None = None
    doctor_id: DoctorId | None = None
    request_id: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class AccessTarget:
    resource: Resource
    patient_id: PatientId | None = None
    doctor_id: DoctorId | None = None


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: DenialReason | None = None

    def __bool__(self) -> bool:
        return self.granted


GRANTED = AccessDecision(True)

_READ = frozenset({Action.read})
_READ_WRITE = frozenset({Action.read, Action.write})

ROLE_PERMISSIONS: dict[Role, dict[Resource, frozenset[Action]]] = {
    Role.patient: {
        Resource.patient: _READ_WRITE,
        Resource.appointment: _READ_WRITE,
        Resource.visit: _READ,
        Resource.procedure: _READ,
        Resource.medical_record: _READ,
        Resource.invoice: frozenset({Action.read, Action.pay}),
    },
    Role.doctor: {
        Resource.doctor: _READ_WRITE,
        Resource.patient: _READ_WRITE,
        Resource.appointment: _READ_WRITE,
        Resource.visit: _READ_WRITE,
        Resource.procedure: _READ_WRITE,
        Resource.medical_record: _READ_WRITE,
    },
    Role.frontdesk: {
        Resource.invoice: _READ,
        Resource.appointment: _READ_WRITE,
    },
}

# Statuses each role may move an appointment into; the state machine still
# decides whether the move is legal from the current status.
APPOINTMENT_STATUS_PERMISSIONS: dict[Role, frozenset[AppointmentStatus]] = {
    Role.patient: frozenset({AppointmentStatus.cancelled}),
    Role.frontdesk: frozenset(
        {
            AppointmentStatus.scheduled,
            AppointmentStatus.confirmed,
            AppointmentStatus.cancelled,
            AppointmentStatus.no_show,
        }
    ),
    Role.doctor: frozenset(AppointmentStatus),
    Role.admin: frozenset(AppointmentStatus),
}


def decide(
    caller: Caller,
    action: Action,
    target: AccessTarget,
    *,
    has_treatment_relationship: bool = False,
) -> AccessDecision:
    if caller.role == Role.admin:
        return GRANTED

    allowed = ROLE_PERMISSIONS.get(caller.role, {}).get(target.resource)
    if not allowed or action not in allowed:
        return AccessDecision(False, DenialReason.role_not_permitted)

    if caller.role == Role.patient:
        if caller.patient_id is None or target.patient_id != caller.patient_id:
            return AccessDecision(False, DenialReason.not_owner)
        return GRANTED

    if caller.role == Role.doctor:
        if target.resource == Resource.patient:
            if not has_treatment_relationship:
                return AccessDecision(False, DenialReason.no_treatment_relationship)
            return GRANTED
        if caller.doctor_id is None or target.doctor_id != caller.doctor_id:
            return AccessDecision(False, DenialReason.not_owner)
        return GRANTED

    return GRANTED


def can_set_appointment_status(caller: Caller, status: AppointmentStatus) -> AccessDecision:
    if status in APPOINTMENT_STATUS_PERMISSIONS.get(caller.role, frozenset()):
        return GRANTED
    return AccessDecision(False, DenialReason.role_not_permitted)


def target_for(obj: object) -> AccessTarget:
    if isinstance(obj, Patient):
        return AccessTarget(Resource.patient, patient_id=obj.id)
    if isinstance(obj, Doctor):
        return AccessTarget(Resource.doctor, doctor_id=obj.id)
    if isinstance(obj, Appointment):
        return AccessTarget(Resource.appointment, patient_id=obj.patient_id, doctor_id=obj.doctor_id)
    if isinstance(obj, Visit):
        return AccessTarget(Resource.visit, patient_id=obj.patient_id, doctor_id=obj.doctor_id)
    if isinstance(obj, Procedure):
        return AccessTarget(Resource.procedure, patient_id=obj.patient_id, doctor_id=obj.doctor_id)
    if isinstance(obj, MedicalRecord):
        return AccessTarget(
            Resource.medical_record, patient_id=obj.patient_id, doctor_id=obj.doctor_id
        )
    if isinstance(obj, Invoice):
        return AccessTarget(Resource.invoice, patient_id=obj.patient_id)
    raise TypeError(f"No access target for {type(obj).__name__}")


def has_treatment_relationship(db: Session, doctor_id: DoctorId, patient_id: PatientId) -> bool:
    visit_id = db.scalar(
        select(Visit.id)
        .where(Visit.doctor_id == doctor_id, Visit.patient_id == patient_id)
        .limit(1)
    )
    return visit_id is not None


def authorize(
    db: Session, caller: Caller, action: Action, target: AccessTarget | object
) -> AccessDecision:
    if not isinstance(target, AccessTarget):
        target = target_for(target)
    related = False
    if (
        caller.role == Role.doctor
        and target.resource == Resource.patient
        and caller.doctor_id is not None
        and target.patient_id is not None
    ):
        related = has_treatment_relationship(db, caller.doctor_id, target.patient_id)
    return decide(caller, action, target, has_treatment_relationship=related)


def require_access(
    db: Session, caller: Caller, action: Action, target: AccessTarget | object
) -> None:
    decision = authorize(db, caller, action, target)
    if not decision:
        resource = target.resource if isinstance(target, AccessTarget) else type(target).__name__
        logger.info(
            "Access denied: user=%s role=%s action=%s resource=%s reason=%s",
            caller.user_id,
            caller.role.value,
            action.value,
            getattr(resource, "value", resource),
            decision.reason.value if decision.reason else None,
        )
        raise AccessDenied(decision.reason or DenialReason.role_not_permitted)


def can_modify_visit(db: Session, caller: Caller, visit: Visit) -> AccessDecision:
    return authorize(db, caller, Action.write, visit)


def caller_for_user(
    db: Session,
    user: User,
    *,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> Caller:
    patient_id = None
    doctor_id = None
    if user.role == Role.patient:
        patient_id = db.scalar(
            select(Patient.id).where(Patient.user_id == user.id, Patient.deleted_at.is_(None))
        )
    elif user.role == Role.doctor:
        doctor_id = db.scalar(
            select(Doctor.id).where(Doctor.user_id == user.id, Doctor.deleted_at.is_(None))
        )
    return Caller(
        user_id=UserId(user.id),
        role=user.role,
        email=user.email,
        patient_id=PatientId(patient_id) if patient_id is not None else None,
        doctor_id=DoctorId(doctor_id) if doctor_id is not None else None,
        request_id=request_id,
        ip_address=ip_address,
    )
