from typing import NewType

UserId = NewType("UserId", int)
PatientId = NewType("PatientId", int)
DoctorId = NewType("DoctorId", int)
AppointmentId = NewType("AppointmentId", int)
VisitId = NewType("VisitId", int)
ProcedureId = NewType("ProcedureId", int)
MedicalRecordId = NewType("MedicalRecordId", int)
InvoiceId = NewType("InvoiceId", int)
PaymentId = NewType("PaymentId", int)
