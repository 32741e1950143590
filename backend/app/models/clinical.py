from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base, SoftDeleteMixin


class VisitStatus(str, enum.Enum):
    scheduled = "SCHEDULED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class ProcedureStatus(str, enum.Enum):
    planned = "PLANNED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class MedicalRecordType(str, enum.Enum):
    general_note = "GENERAL_NOTE"
    diagnosis = "DIAGNOSIS"
    prescription = "PRESCRIPTION"
    lab_result = "LAB_RESULT"
    imaging = "IMAGING"
    referral = "REFERRAL"


class Visit(Base, AuditMixin):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False, index=True)
    appointment_id: Mapped[int | None] = mapped_column(
        ForeignKey("appointments.id"), nullable=True, unique=True
    )
    status: Mapped[VisitStatus] = mapped_column(
        Enum(VisitStatus, name="visit_status"),
        default=VisitStatus.scheduled,
        nullable=False,
    )
    visit_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    patient = relationship("Patient", back_populates="visits", lazy="joined")
    doctor = relationship("Doctor", back_populates="visits", lazy="joined")
    appointment = relationship("Appointment", back_populates="visit")
    procedures = relationship(
        "Procedure",
        back_populates="visit",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Procedure.id",
    )
    medical_records = relationship(
        "MedicalRecord",
        back_populates="visit",
        lazy="selectin",
        order_by="MedicalRecord.id",
    )

    @property
    def is_closed(self) -> bool:
        return self.status in (VisitStatus.completed, VisitStatus.cancelled)

    @property
    def total_cost_minor(self) -> int:
        return sum(procedure.cost_minor for procedure in self.procedures or [])


class Procedure(Base, AuditMixin):
    __tablename__ = "procedures"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    visit_id: Mapped[int] = mapped_column(ForeignKey("visits.id"), nullable=False, index=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cost_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[ProcedureStatus] = mapped_column(
        Enum(ProcedureStatus, name="procedure_status"),
        default=ProcedureStatus.planned,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    visit = relationship("Visit", back_populates="procedures")


class MedicalRecord(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "medical_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False, index=True)
    visit_id: Mapped[int | None] = mapped_column(ForeignKey("visits.id"), nullable=True, index=True)
    record_type: Mapped[MedicalRecordType] = mapped_column(
        Enum(MedicalRecordType, name="medical_record_type"),
        default=MedicalRecordType.general_note,
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_confidential: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    visit = relationship("Visit", back_populates="medical_records")
