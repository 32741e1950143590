"""Invoices and payment reconciliation.

An invoice's ``amount_paid_minor`` is the running sum of its payments and is
only ever moved by ``record_payment``. That function locks the invoice row and
writes the new total with a compare-and-swap on the value it read, so two
payments racing on the same invoice cannot both be accepted against a stale
balance.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.ids import InvoiceId, PatientId, PaymentId, UserId, VisitId
from app.core.settings import settings
from app.db.session import commit_or_rollback
from app.models.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod
from app.models.user import Role
from app.services.audit import log_event
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
    AmountOutOfRange,
    CannotDeleteNonDraftInvoice,
    ConcurrentUpdate,
    CurrencyMismatch,
    DomainError,
    InvalidTransition,
    InvariantViolation,
    InvoiceHasPayments,
    InvoiceNotFound,
    InvoiceNotModifiable,
    NonPositiveAmount,
    OverpaymentRejected,
)
from app.services.events import EventBus, PaymentRecorded, VisitCompleted
from app.services.money import Money
from app.services.users import get_patient
from app.services.visits import get_visit

logger = logging.getLogger("clinic_pms.billing")

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.draft: frozenset(
        {
            InvoiceStatus.issued,
            InvoiceStatus.partially_paid,
            InvoiceStatus.paid,
            InvoiceStatus.cancelled,
        }
    ),
    InvoiceStatus.issued: frozenset(
        {
            InvoiceStatus.partially_paid,
            InvoiceStatus.paid,
            InvoiceStatus.overdue,
            InvoiceStatus.cancelled,
        }
    ),
    InvoiceStatus.partially_paid: frozenset(
        {InvoiceStatus.partially_paid, InvoiceStatus.paid, InvoiceStatus.overdue}
    ),
    InvoiceStatus.overdue: frozenset(
        {InvoiceStatus.partially_paid, InvoiceStatus.paid, InvoiceStatus.cancelled}
    ),
    InvoiceStatus.paid: frozenset(),
    InvoiceStatus.cancelled: frozenset(),
}

CLOSED_STATUSES = frozenset({InvoiceStatus.paid, InvoiceStatus.cancelled})
OUTSTANDING_STATUSES = frozenset(
    {InvoiceStatus.issued, InvoiceStatus.overdue, InvoiceStatus.partially_paid}
)


def format_invoice_number(invoice_id: InvoiceId) -> str:
    return f"INV-{invoice_id:06d}"


def derive_status(total_minor: int, paid_minor: int, current: InvoiceStatus) -> InvoiceStatus:
    if paid_minor >= total_minor:
        return InvoiceStatus.paid
    if paid_minor > 0:
        return InvoiceStatus.partially_paid
    return current


def _validate_transition(current: InvoiceStatus, requested: InvoiceStatus) -> None:
    if requested not in INVOICE_TRANSITIONS[current]:
        raise InvalidTransition(current, requested)


def _validate_total(total_minor: int) -> None:
    if total_minor <= 0:
        raise NonPositiveAmount()
    if total_minor > settings.max_invoice_amount_minor:
        raise AmountOutOfRange(
            f"Invoice total exceeds the maximum of {settings.max_invoice_amount_minor}"
        )


def get_invoice(db: Session, invoice_id: InvoiceId) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice or invoice.deleted_at is not None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def read_invoice(db: Session, caller: Caller, invoice_id: InvoiceId) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    require_access(db, caller, Action.read, invoice)
    return invoice


def invoice_balance(db: Session, caller: Caller, invoice_id: InvoiceId) -> Money:
    invoice = read_invoice(db, caller, invoice_id)
    return Money(invoice.balance_minor, invoice.currency)


def list_invoices(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId | None = None,
    status: InvoiceStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Invoice]:
    stmt = select(Invoice).where(Invoice.deleted_at.is_(None))
    if caller.role == Role.patient:
        stmt = stmt.where(Invoice.patient_id == caller.patient_id)
    elif caller.role not in (Role.frontdesk, Role.admin):
        raise AccessDenied(DenialReason.role_not_permitted)
    if patient_id is not None:
        stmt = stmt.where(Invoice.patient_id == patient_id)
    if status is not None:
        stmt = stmt.where(Invoice.status == status)
    stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).unique())


def _draft_invoice(
    db: Session,
    *,
    patient_id: PatientId,
    total: Money,
    created_by: int | None,
    visit_id: VisitId | None = None,
    description: str | None = None,
    due_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    invoice = Invoice(
        patient_id=patient_id,
        visit_id=visit_id,
        invoice_number="",
        description=description,
        status=InvoiceStatus.draft,
        total_minor=total.amount_minor,
        amount_paid_minor=0,
        currency=total.currency,
        due_date=due_date,
        notes=notes,
        created_by_user_id=created_by,
        updated_by_user_id=created_by,
    )
    db.add(invoice)
    db.flush()
    invoice.invoice_number = format_invoice_number(invoice.id)
    commit_or_rollback(db)
    return invoice


def create_invoice(
    db: Session,
    caller: Caller,
    *,
    patient_id: PatientId,
    total_minor: int,
    currency: str | None = None,
    visit_id: VisitId | None = None,
    description: str | None = None,
    due_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    patient = get_patient(db, patient_id)
    require_access(db, caller, Action.write, AccessTarget(Resource.invoice, patient_id=patient.id))
    _validate_total(total_minor)
    total = Money(total_minor, currency or settings.currency)
    if visit_id is not None:
        visit = get_visit(db, visit_id)
        if visit.patient_id != patient.id:
            raise InvariantViolation("Visit belongs to a different patient")
        if visit.currency != total.currency:
            raise CurrencyMismatch(visit.currency, total.currency)

    invoice = _draft_invoice(
        db,
        patient_id=patient.id,
        total=total,
        created_by=caller.user_id,
        visit_id=visit_id,
        description=description,
        due_date=due_date,
        notes=notes,
    )
    log_event(
        db,
        actor=caller,
        action="invoice.created",
        entity_type="invoice",
        entity_id=invoice.id,
        summary=f"Invoice {invoice.invoice_number} drafted for {total.format()}",
        after_obj=invoice,
    )
    return invoice


def issue_invoice(db: Session, caller: Caller, invoice_id: InvoiceId) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    require_access(db, caller, Action.write, invoice)
    if invoice.status != InvoiceStatus.draft:
        raise InvalidTransition(invoice.status, InvoiceStatus.issued)
    now = datetime.now(timezone.utc)
    invoice.status = InvoiceStatus.issued
    invoice.issued_at = now
    if invoice.due_date is None:
        invoice.due_date = now.date() + timedelta(days=settings.invoice_due_days)
    invoice.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="invoice.issued",
        entity_type="invoice",
        entity_id=invoice.id,
        summary=f"Invoice {invoice.invoice_number} issued",
        before_data={"status": InvoiceStatus.draft.value},
        after_obj=invoice,
    )
    return invoice


def cancel_invoice(db: Session, caller: Caller, invoice_id: InvoiceId) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    require_access(db, caller, Action.write, invoice)
    if invoice.status in CLOSED_STATUSES:
        raise InvoiceNotModifiable()
    if invoice.amount_paid_minor > 0 or invoice.payments:
        raise InvoiceHasPayments()
    current = invoice.status
    _validate_transition(current, InvoiceStatus.cancelled)
    invoice.status = InvoiceStatus.cancelled
    invoice.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="invoice.cancelled",
        entity_type="invoice",
        entity_id=invoice.id,
        summary=f"Invoice {invoice.invoice_number} cancelled",
        before_data={"status": current.value},
        after_obj=invoice,
    )
    return invoice


def soft_delete_invoice(db: Session, caller: Caller, invoice_id: InvoiceId) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    require_access(db, caller, Action.write, invoice)
    if invoice.status != InvoiceStatus.draft:
        raise CannotDeleteNonDraftInvoice()
    invoice.deleted_at = datetime.now(timezone.utc)
    invoice.deleted_by_user_id = caller.user_id
    commit_or_rollback(db)
    log_event(
        db,
        actor=caller,
        action="invoice.deleted",
        entity_type="invoice",
        entity_id=invoice.id,
        summary=f"Draft invoice {invoice.invoice_number} deleted",
    )
    return invoice


def mark_overdue_invoices(
    db: Session, caller: Caller, *, as_of: date | None = None
) -> list[Invoice]:
    if caller.role != Role.admin:
        raise AccessDenied(DenialReason.role_not_permitted)
    as_of = as_of or datetime.now(timezone.utc).date()
    invoices = list(
        db.scalars(
            select(Invoice).where(
                Invoice.deleted_at.is_(None),
                Invoice.status.in_([InvoiceStatus.issued, InvoiceStatus.partially_paid]),
                Invoice.due_date.is_not(None),
                Invoice.due_date < as_of,
            )
        ).unique()
    )
    if not invoices:
        return []
    for invoice in invoices:
        invoice.status = InvoiceStatus.overdue
        invoice.updated_by_user_id = caller.user_id
    commit_or_rollback(db)
    logger.info("Marked %s invoice(s) overdue as of %s", len(invoices), as_of.isoformat())
    for invoice in invoices:
        log_event(
            db,
            actor=caller,
            action="invoice.overdue",
            entity_type="invoice",
            entity_id=invoice.id,
            summary=f"Invoice {invoice.invoice_number} overdue since {invoice.due_date}",
        )
    return invoices


def _lock_invoice(db: Session, invoice_id: InvoiceId) -> Invoice:
    invoice = db.scalar(
        select(Invoice)
        .where(Invoice.id == invoice_id)
        .with_for_update(of=Invoice)
        .execution_options(populate_existing=True)
    )
    if not invoice or invoice.deleted_at is not None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def record_payment(
    db: Session,
    caller: Caller,
    invoice_id: InvoiceId,
    *,
    amount_minor: int,
    method: PaymentMethod,
    currency: str | None = None,
    transaction_ref: str | None = None,
    notes: str | None = None,
    events: EventBus | None = None,
) -> Payment:
    try:
        invoice = _lock_invoice(db, invoice_id)
        require_access(db, caller, Action.pay, invoice)
        if invoice.status in CLOSED_STATUSES:
            raise InvoiceNotModifiable()
        if amount_minor <= 0:
            raise NonPositiveAmount()
        amount = Money(amount_minor, currency or invoice.currency)
        if amount.currency != invoice.currency:
            raise CurrencyMismatch(invoice.currency, amount.currency)

        observed_paid = invoice.amount_paid_minor
        new_paid = observed_paid + amount.amount_minor
        if new_paid > invoice.total_minor:
            raise OverpaymentRejected(invoice.total_minor - observed_paid)

        before_status = invoice.status
        new_status = derive_status(invoice.total_minor, new_paid, before_status)
        if new_status != before_status:
            _validate_transition(before_status, new_status)
    except DomainError:
        db.rollback()
        raise

    now = datetime.now(timezone.utc)
    values = {
        "amount_paid_minor": new_paid,
        "status": new_status,
        "updated_by_user_id": caller.user_id,
        "updated_at": now,
    }
    if new_status == InvoiceStatus.paid:
        values["paid_at"] = now
    result = db.execute(
        update(Invoice)
        .where(Invoice.id == invoice.id, Invoice.amount_paid_minor == observed_paid)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.warning(
            "Concurrent payment detected on invoice %s (observed paid %s)", invoice.id, observed_paid
        )
        raise ConcurrentUpdate("Invoice was updated concurrently, please retry")

    payment = Payment(
        invoice_id=invoice.id,
        amount_minor=amount.amount_minor,
        currency=amount.currency,
        method=method,
        paid_at=now,
        transaction_ref=transaction_ref,
        notes=notes,
        received_by_user_id=caller.user_id,
    )
    db.add(payment)
    commit_or_rollback(db)
    db.refresh(invoice)

    log_event(
        db,
        actor=caller,
        action="payment.recorded",
        entity_type="invoice",
        entity_id=invoice.id,
        summary=f"Payment {amount.format()} via {method.value}",
        before_data={"status": before_status.value, "amount_paid_minor": observed_paid},
        after_data={
            "payment_id": payment.id,
            "status": invoice.status.value,
            "amount_paid_minor": invoice.amount_paid_minor,
        },
    )
    if before_status != InvoiceStatus.paid and invoice.status == InvoiceStatus.paid:
        log_event(
            db,
            actor=caller,
            action="invoice.paid",
            entity_type="invoice",
            entity_id=invoice.id,
            summary=f"Invoice {invoice.invoice_number} paid in full",
        )
    if events is not None:
        events.publish(
            PaymentRecorded(
                invoice_id=InvoiceId(invoice.id),
                payment_id=PaymentId(payment.id),
                patient_id=PatientId(invoice.patient_id),
                amount=amount,
                recorded_by=UserId(caller.user_id),
            )
        )
    return payment


def make_invoice_drafter(session_factory: Callable[[], Session]) -> Callable[[VisitCompleted], None]:
    """Build a ``VisitCompleted`` subscriber that drafts an invoice for the visit total."""

    def draft_for_visit(event: VisitCompleted) -> None:
        if not event.total_cost.is_positive:
            logger.info("Visit %s completed with no billable cost", event.visit_id)
            return
        db = session_factory()
        try:
            existing = db.scalar(
                select(Invoice.id).where(
                    Invoice.visit_id == event.visit_id, Invoice.deleted_at.is_(None)
                )
            )
            if existing is not None:
                return
            invoice = _draft_invoice(
                db,
                patient_id=event.patient_id,
                total=event.total_cost,
                created_by=event.completed_by,
                visit_id=event.visit_id,
                description=f"Visit {event.visit_id}",
            )
            log_event(
                db,
                actor=None,
                action="invoice.created",
                entity_type="invoice",
                entity_id=invoice.id,
                summary=f"Invoice {invoice.invoice_number} drafted from completed visit",
                after_obj=invoice,
            )
        finally:
            db.close()

    return draft_for_visit
