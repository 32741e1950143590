from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.ids import DoctorId, PatientId, UserId
from app.core.security import hash_password, verify_password
from app.db.session import commit_or_rollback
from app.models.clinical import Visit
from app.models.doctor import Doctor
from app.models.patient import Patient
from app.models.user import Role, User
from app.services.audit import log_event, snapshot_model
from app.services.authorization import Action, Caller, DenialReason, require_access
from app.services.errors import (
    AccessDenied,
    DoctorNotFound,
    DuplicateEmail,
    InvariantViolation,
    PatientNotFound,
    UserNotFound,
)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email.lower().strip()))


def get_user_by_id(db: Session, user_id: UserId) -> User | None:
    return db.scalar(select(User).where(User.id == user_id))


def authenticate(db: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def _new_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str,
    role: Role,
    must_change_password: bool = False,
) -> User:
    if get_user_by_email(db, email):
        raise DuplicateEmail()
    now = datetime.now(timezone.utc)
    user = User(
        email=email.lower().strip(),
        full_name=full_name,
        role=role,
        is_active=True,
        must_change_password=must_change_password,
        hashed_password=hash_password(password),
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    return user


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str = "",
    role: Role = Role.frontdesk,
    must_change_password: bool = False,
) -> User:
    user = _new_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=role,
        must_change_password=must_change_password,
    )
    commit_or_rollback(db)
    return user


def register_patient(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str,
    actor: Caller | None = None,
    date_of_birth: date | None = None,
    gender: str | None = None,
    blood_type: str | None = None,
    phone: str | None = None,
    allergies: str | None = None,
    emergency_contact_name: str | None = None,
    emergency_contact_phone: str | None = None,
) -> Patient:
    user = _new_user(db, email=email, password=password, full_name=full_name, role=Role.patient)
    creator_id = actor.user_id if actor else user.id
    patient = Patient(
        user_id=user.id,
        date_of_birth=date_of_birth,
        gender=gender,
        blood_type=blood_type,
        phone=phone,
        allergies=allergies,
        emergency_contact_name=emergency_contact_name,
        emergency_contact_phone=emergency_contact_phone,
        created_by_user_id=creator_id,
        updated_by_user_id=creator_id,
    )
    db.add(patient)
    commit_or_rollback(db)
    log_event(
        db,
        actor=actor,
        action="patient.created",
        entity_type="patient",
        entity_id=patient.id,
        summary=f"Patient {full_name} registered",
        after_data={"user_id": user.id, "email": user.email},
    )
    return patient


def register_doctor(
    db: Session,
    *,
    actor: Caller,
    email: str,
    password: str,
    full_name: str,
    specialization: str,
    license_number: str,
    bio: str | None = None,
) -> Doctor:
    user = _new_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=Role.doctor,
        must_change_password=True,
    )
    doctor = Doctor(
        user_id=user.id,
        specialization=specialization,
        license_number=license_number,
        bio=bio,
        created_by_user_id=actor.user_id,
        updated_by_user_id=actor.user_id,
    )
    db.add(doctor)
    commit_or_rollback(db)
    log_event(
        db,
        actor=actor,
        action="doctor.created",
        entity_type="doctor",
        entity_id=doctor.id,
        summary=f"Doctor {full_name} ({specialization}) registered",
        after_obj=doctor,
    )
    return doctor


def create_staff_user(
    db: Session, *, actor: Caller, email: str, password: str, full_name: str, role: Role
) -> User:
    # patients and doctors always get a profile row alongside the account
    if role in (Role.patient, Role.doctor):
        raise InvariantViolation("Use /users/patients or /users/doctors for clinical accounts")
    user = create_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=role,
        must_change_password=True,
    )
    log_event(
        db,
        actor=actor,
        action="user.created",
        entity_type="user",
        entity_id=user.id,
        after_data={"email": user.email, "role": user.role.value},
    )
    return user


def deactivate_user(db: Session, *, actor: Caller, user_id: UserId) -> User:
    user = get_user_by_id(db, user_id)
    if not user:
        raise UserNotFound(user_id)
    if not user.is_active:
        return user
    user.is_active = False
    user.deactivated_at = datetime.now(timezone.utc)
    commit_or_rollback(db)
    log_event(
        db,
        actor=actor,
        action="user.deactivated",
        entity_type="user",
        entity_id=user.id,
        summary=f"User {user.email} deactivated",
    )
    return user


def get_patient(db: Session, patient_id: PatientId) -> Patient:
    patient = db.get(Patient, patient_id)
    if not patient or patient.deleted_at is not None:
        raise PatientNotFound(patient_id)
    return patient


def get_doctor(db: Session, doctor_id: DoctorId) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if not doctor or doctor.deleted_at is not None:
        raise DoctorNotFound(doctor_id)
    return doctor


def read_patient(db: Session, caller: Caller, patient_id: PatientId) -> Patient:
    patient = get_patient(db, patient_id)
    require_access(db, caller, Action.read, patient)
    return patient


def read_doctor(db: Session, caller: Caller, doctor_id: DoctorId) -> Doctor:
    doctor = get_doctor(db, doctor_id)
    require_access(db, caller, Action.read, doctor)
    return doctor


def update_patient_profile(
    db: Session, caller: Caller, patient_id: PatientId, changes: dict
) -> Patient:
    patient = get_patient(db, patient_id)
    require_access(db, caller, Action.write, patient)
    before_data = snapshot_model(patient)
    for key, value in changes.items():
        setattr(patient, key, value)
    patient.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="patient.updated",
        entity_type="patient",
        entity_id=patient.id,
        summary="Patient profile updated",
        before_data=before_data,
        after_obj=patient,
    )
    return patient


def update_doctor_profile(
    db: Session, caller: Caller, doctor_id: DoctorId, changes: dict
) -> Doctor:
    doctor = get_doctor(db, doctor_id)
    require_access(db, caller, Action.write, doctor)
    before_data = snapshot_model(doctor)
    for key, value in changes.items():
        setattr(doctor, key, value)
    doctor.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="doctor.updated",
        entity_type="doctor",
        entity_id=doctor.id,
        summary="Doctor profile updated",
        before_data=before_data,
        after_obj=doctor,
    )
    return doctor


def soft_delete_patient(db: Session, *, actor: Caller, patient_id: PatientId) -> Patient:
    patient = get_patient(db, patient_id)
    patient.deleted_at = datetime.now(timezone.utc)
    patient.deleted_by_user_id = actor.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=actor,
        action="patient.deleted",
        entity_type="patient",
        entity_id=patient.id,
        summary="Patient record soft-deleted",
    )
    return patient


def user_count(db: Session) -> int:
    return int(db.scalar(select(func.count(User.id))) or 0)


def seed_initial_admin(db: Session, *, email: str, password: str) -> bool:
    if user_count(db) > 0:
        return False
    create_user(
        db,
        email=email,
        password=password,
        full_name="Admin",
        role=Role.admin,
        must_change_password=True,
    )
    return True


def change_password(
    db: Session,
    *,
    actor: Caller,
    user: User,
    new_password: str,
    old_password: str | None = None,
) -> User:
    if not user.must_change_password:
        if not old_password or not verify_password(old_password, user.hashed_password):
            raise InvariantViolation("Invalid old password")
    elif old_password and not verify_password(old_password, user.hashed_password):
        raise InvariantViolation("Invalid old password")
    user.hashed_password = hash_password(new_password)
    user.must_change_password = False
    commit_or_rollback(db)
    log_event(
        db,
        actor=actor,
        action="user.password_changed",
        entity_type="user",
        entity_id=user.id,
        after_data={"status": "success"},
    )
    return user


def list_patients(
    db: Session, caller: Caller, *, limit: int = 50, offset: int = 0
) -> list[Patient]:
    stmt = select(Patient).where(Patient.deleted_at.is_(None))
    if caller.role == Role.patient:
        stmt = stmt.where(Patient.id == caller.patient_id)
    elif caller.role == Role.doctor:
        treated = select(Visit.patient_id).where(Visit.doctor_id == caller.doctor_id)
        stmt = stmt.where(Patient.id.in_(treated))
    elif caller.role != Role.admin:
        raise AccessDenied(DenialReason.role_not_permitted)
    stmt = stmt.order_by(Patient.id).limit(limit).offset(offset)
    return list(db.scalars(stmt).unique())


def list_doctors(db: Session, *, limit: int = 100, offset: int = 0) -> list[Doctor]:
    stmt = (
        select(Doctor)
        .where(Doctor.deleted_at.is_(None))
        .order_by(Doctor.id)
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt).unique())
