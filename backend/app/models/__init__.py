from app.models.base import Base
from app.models.user import Role, User
from app.models.audit_log import AuditLog
from app.models.patient import Patient
from app.models.doctor import Doctor
from app.models.appointment import Appointment, AppointmentStatus
from app.models.clinical import (
    MedicalRecord,
    MedicalRecordType,
    Procedure,
    ProcedureStatus,
    Visit,
    VisitStatus,
)
from app.models.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod

__all__ = [
    "Base",
    "Role",
    "User",
    "AuditLog",
    "Patient",
    "Doctor",
    "Appointment",
    "AppointmentStatus",
    "Visit",
    "VisitStatus",
    "Procedure",
    "ProcedureStatus",
    "MedicalRecord",
    "MedicalRecordType",
    "Invoice",
    "InvoiceStatus",
    "Payment",
    "PaymentMethod",
]
