from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.ids import DoctorId, MedicalRecordId, PatientId, VisitId
from app.db.session import commit_or_rollback
from app.models.clinical import MedicalRecord, MedicalRecordType
from app.models.user import Role
from app.services.audit import log_event, snapshot_model
from app.services.authorization import (
    AccessTarget,
    Action,
    Caller,
    DenialReason,
    Resource,
    require_access,
)
from app.services.errors import (
    AccessDenied,
    InvariantViolation,
    MedicalRecordNotFound,
    VisitNotModifiable,
)
from app.services.users import get_doctor, get_patient
from app.services.visits import get_visit

EDITABLE_FIELDS = ("title", "content", "record_type", "is_confidential")


def get_medical_record(db: Session, record_id: MedicalRecordId) -> MedicalRecord:
    record = db.get(MedicalRecord, record_id)
    if not record or record.deleted_at is not None:
        raise MedicalRecordNotFound(record_id)
    return record


def read_medical_record(db: Session, caller: Caller, record_id: MedicalRecordId) -> MedicalRecord:
    record = get_medical_record(db, record_id)
    require_access(db, caller, Action.read, record)
    return record


def _ensure_visit_open(db: Session, record: MedicalRecord) -> None:
    if record.visit_id is not None and get_visit(db, record.visit_id).is_closed:
        raise VisitNotModifiable()


def _scoped(stmt, caller: Caller):
    if caller.role == Role.patient:
        return stmt.where(MedicalRecord.patient_id == caller.patient_id)
    if caller.role == Role.doctor:
        return stmt.where(MedicalRecord.doctor_id == caller.doctor_id)
    if caller.role != Role.admin:
        raise AccessDenied(DenialReason.role_not_permitted)
    return stmt


def create_medical_record(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId,
    content: str,
    doctor_id: DoctorId | None = None,
    visit_id: VisitId | None = None,
    record_type: MedicalRecordType = MedicalRecordType.general_note,
    title: str | None = None,
    is_confidential: bool = False,
) -> MedicalRecord:
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
        AccessTarget(Resource.medical_record, patient_id=patient.id, doctor_id=doctor.id),
    )
    if visit_id is not None:
        visit = get_visit(db, visit_id)
        if visit.patient_id != patient.id:
            raise InvariantViolation("Visit belongs to a different patient")
        if visit.doctor_id != doctor.id:
            raise InvariantViolation("Visit belongs to a different doctor")
        if visit.is_closed:
            raise VisitNotModifiable()

    record = MedicalRecord(
        patient_id=patient.id,
        doctor_id=doctor.id,
        visit_id=visit_id,
        record_type=record_type,
        title=title,
        content=content,
        is_confidential=is_confidential,
        created_by_user_id=caller.user_id,
        updated_by_user_id=caller.user_id,
    )
    db.add(record)
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="medical_record.created",
        entity_type="medical_record",
        entity_id=record.id,
        summary=f"{record_type.value} record added for patient {patient.id}",
        after_obj=record,
    )
    return record


def update_medical_record(
    db: Session, caller: Caller, record_id: MedicalRecordId, changes: dict
) -> MedicalRecord:
    record = get_medical_record(db, record_id)
    require_access(db, caller, Action.write, record)
    _ensure_visit_open(db, record)
    before_data = snapshot_model(record)
    for key in EDITABLE_FIELDS:
        if changes.get(key) is not None:
            setattr(record, key, changes[key])
    record.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="medical_record.updated",
        entity_type="medical_record",
        entity_id=record.id,
        summary="Medical record updated",
        before_data=before_data,
        after_obj=record,
    )
    return record


def list_medical_records(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId | None = None,
    record_type: MedicalRecordType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[MedicalRecord]:
    stmt = _scoped(select(MedicalRecord).where(MedicalRecord.deleted_at.is_(None)), caller)
    if patient_id is not None:
        stmt = stmt.where(MedicalRecord.patient_id == patient_id)
    if record_type is not None:
        stmt = stmt.where(MedicalRecord.record_type == record_type)
    stmt = stmt.order_by(MedicalRecord.created_at.desc(), MedicalRecord.id.desc())
    return list(db.scalars(stmt.limit(limit).offset(offset)))


def search_medical_records(
    db: Session, caller: Caller, query: str, *, limit: int = 50
) -> list[MedicalRecord]:
    term = query.strip()
    if not term:
        return []
    stmt = _scoped(
        select(MedicalRecord).where(
            MedicalRecord.deleted_at.is_(None),
            MedicalRecord.content.ilike(f"%{term}%"),
        ),
        caller,
    )
    stmt = stmt.order_by(MedicalRecord.created_at.desc(), MedicalRecord.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def delete_medical_record(db: Session, caller: Caller, record_id: MedicalRecordId) -> MedicalRecord:
    record = get_medical_record(db, record_id)
    if caller.role != Role.admin:
        raise AccessDenied(DenialReason.role_not_permitted)
    before_data = snapshot_model(record)
    record.deleted_at = datetime.now(timezone.utc)
    record.deleted_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="medical_record.deleted",
        entity_type="medical_record",
        entity_id=record.id,
        summary="Medical record soft-deleted",
        before_data=before_data,
    )
    return record
