from __future__ import annotations

import enum


class DomainError(Exception):
    code = "domain_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return "Request could not be completed"


class NotFoundError(DomainError):
    code = "not_found"
    resource = "Resource"

    def __init__(self, resource_id: object | None = None, message: str | None = None) -> None:
        self.resource_id = resource_id
        super().__init__(message)

    def default_message(self) -> str:
        return f"{self.resource} not found"


class UserNotFound(NotFoundError):
    resource = "User"


class PatientNotFound(NotFoundError):
    resource = "Patient"


class DoctorNotFound(NotFoundError):
    resource = "Doctor"


class AppointmentNotFound(NotFoundError):
    resource = "Appointment"


class VisitNotFound(NotFoundError):
    resource = "Visit"


class ProcedureNotFound(NotFoundError):
    resource = "Procedure"


class MedicalRecordNotFound(NotFoundError):
    resource = "Medical record"


class InvoiceNotFound(NotFoundError):
    resource = "Invoice"


class InvalidTransition(DomainError):
    code = "invalid_transition"

    def __init__(self, current: enum.Enum | str, requested: enum.Enum | str) -> None:
        self.current = getattr(current, "value", current)
        self.requested = getattr(requested, "value", requested)
        super().__init__(f"Cannot transition from {self.current} to {self.requested}")


class AccessDenied(DomainError):
    """Raised when the authorization policy refuses an action.

    The reason is kept for logging; the HTTP layer only reports "Forbidden"
    so callers cannot discover which records exist.
    """

    code = "forbidden"

    def __init__(self, reason: enum.Enum | str) -> None:
        self.reason = getattr(reason, "value", reason)
        super().__init__("Forbidden")


class InvariantViolation(DomainError):
    code = "invariant_violation"


class AlreadyCompleted(InvariantViolation):
    code = "already_completed"

    def default_message(self) -> str:
        return "Visit is already completed"


class VisitNotModifiable(InvariantViolation):
    code = "visit_not_modifiable"

    def default_message(self) -> str:
        return "Visit is closed and can no longer be modified"


class InvoiceNotModifiable(InvariantViolation):
    code = "invoice_not_modifiable"

    def default_message(self) -> str:
        return "Invoice is paid or cancelled and can no longer be modified"


class InvoiceHasPayments(InvariantViolation):
    code = "invoice_has_payments"

    def default_message(self) -> str:
        return "Invoice has payments recorded against it"


class OverpaymentRejected(InvariantViolation):
    code = "overpayment_rejected"

    def __init__(self, balance_minor: int) -> None:
        self.balance_minor = balance_minor
        super().__init__(f"Payment exceeds outstanding balance of {balance_minor}")


class NonPositiveAmount(InvariantViolation):
    code = "non_positive_amount"

    def default_message(self) -> str:
        return "Amount must be greater than zero"


class AmountOutOfRange(InvariantViolation):
    code = "amount_out_of_range"

    def default_message(self) -> str:
        return "Amount exceeds the permitted maximum"


class CannotDeleteNonDraftInvoice(InvariantViolation):
    code = "cannot_delete_non_draft_invoice"

    def default_message(self) -> str:
        return "Can only delete draft invoices"


class MissingScheduledTime(InvariantViolation):
    code = "missing_scheduled_time"

    def default_message(self) -> str:
        return "A scheduled time is required to schedule an appointment"


class CurrencyMismatch(InvariantViolation):
    code = "currency_mismatch"

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected currency {expected}, got {actual}")


class DuplicateEmail(InvariantViolation):
    code = "duplicate_email"

    def default_message(self) -> str:
        return "Email already exists"


class PersistenceFailure(DomainError):
    code = "persistence_failure"

    def default_message(self) -> str:
        return "Temporary failure, please try again"


class ConcurrentUpdate(PersistenceFailure):
    code = "concurrent_update"
