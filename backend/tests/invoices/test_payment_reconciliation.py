from datetime import date

import pytest
from sqlalchemy import func, select, update

from app.core.settings import settings
from app.models.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod
from app.services import invoices
from app.services.authorization import caller_for_user
from app.services.errors import (
    AccessDenied,
    AmountOutOfRange,
    CannotDeleteNonDraftInvoice,
    ConcurrentUpdate,
    CurrencyMismatch,
    InvoiceHasPayments,
    InvoiceNotFound,
    InvoiceNotModifiable,
    NonPositiveAmount,
    OverpaymentRejected,
)
from app.services.events import EventBus, PaymentRecorded
from app.services.invoices import (
    cancel_invoice,
    create_invoice,
    derive_status,
    get_invoice,
    issue_invoice,
    mark_overdue_invoices,
    record_payment,
    soft_delete_invoice,
)
from app.services.money import Money


def payment_count(db) -> int:
    return db.scalar(select(func.count(Payment.id)))


@pytest.fixture
def issued_invoice(db, admin_caller, patient):
    invoice = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=4500)
    return issue_invoice(db, admin_caller, invoice.id)


@pytest.mark.parametrize(
    ("paid", "expected"),
    [
        (0, InvoiceStatus.issued),
        (1, InvoiceStatus.partially_paid),
        (4499, InvoiceStatus.partially_paid),
        (4500, InvoiceStatus.paid),
    ],
)
def test_derive_status(paid, expected):
    assert derive_status(4500, paid, InvoiceStatus.issued) == expected


def test_create_assigns_number_and_draft_status(db, admin_caller, patient):
    invoice = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=1200)
    assert invoice.status == InvoiceStatus.draft
    assert invoice.invoice_number == f"INV-{invoice.id:06d}"
    assert invoice.currency == settings.currency
    assert invoice.amount_paid_minor == 0


def test_create_validates_total(db, admin_caller, frontdesk_caller, patient):
    with pytest.raises(NonPositiveAmount):
        create_invoice(db, admin_caller, patient_id=patient.id, total_minor=0)
    with pytest.raises(AmountOutOfRange):
        create_invoice(
            db, admin_caller, patient_id=patient.id, total_minor=settings.max_invoice_amount_minor + 1
        )
    with pytest.raises(AccessDenied):
        create_invoice(db, frontdesk_caller, patient_id=patient.id, total_minor=100)


def test_issue_sets_due_date(db, issued_invoice):
    assert issued_invoice.status == InvoiceStatus.issued
    assert issued_invoice.issued_at is not None
    assert issued_invoice.due_date is not None


def test_partial_then_full_payment(db, admin_caller, issued_invoice):
    record_payment(db, admin_caller, issued_invoice.id, amount_minor=4499, method=PaymentMethod.card)
    assert issued_invoice.status == InvoiceStatus.partially_paid
    assert issued_invoice.balance_minor == 1

    record_payment(db, admin_caller, issued_invoice.id, amount_minor=1, method=PaymentMethod.cash)
    assert issued_invoice.status == InvoiceStatus.paid
    assert issued_invoice.balance_minor == 0
    assert issued_invoice.paid_at is not None
    assert payment_count(db) == 2

    with pytest.raises(InvoiceNotModifiable):
        record_payment(db, admin_caller, issued_invoice.id, amount_minor=1, method=PaymentMethod.cash)
    assert payment_count(db) == 2


def test_overpayment_is_rejected_and_nothing_persisted(db, admin_caller, issued_invoice):
    with pytest.raises(OverpaymentRejected) as exc:
        record_payment(db, admin_caller, issued_invoice.id, amount_minor=4501, method=PaymentMethod.cash)
    assert exc.value.balance_minor == 4500

    record_payment(db, admin_caller, issued_invoice.id, amount_minor=2000, method=PaymentMethod.cash)
    with pytest.raises(OverpaymentRejected) as exc:
        record_payment(db, admin_caller, issued_invoice.id, amount_minor=2501, method=PaymentMethod.cash)
    assert exc.value.balance_minor == 2500

    db.refresh(issued_invoice)
    assert issued_invoice.amount_paid_minor == 2000
    assert issued_invoice.status == InvoiceStatus.partially_paid
    assert payment_count(db) == 1


@pytest.mark.parametrize("amount", [0, -100])
def test_non_positive_payment_is_rejected(db, admin_caller, issued_invoice, amount):
    with pytest.raises(NonPositiveAmount):
        record_payment(db, admin_caller, issued_invoice.id, amount_minor=amount, method=PaymentMethod.cash)
    assert payment_count(db) == 0


def test_payment_currency_must_match(db, admin_caller, issued_invoice):
    with pytest.raises(CurrencyMismatch):
        record_payment(
            db,
            admin_caller,
            issued_invoice.id,
            amount_minor=100,
            currency="USD",
            method=PaymentMethod.card,
        )


def test_draft_invoice_takes_payments(db, admin_caller, patient):
    invoice = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=4500)
    assert invoice.status == InvoiceStatus.draft

    record_payment(db, admin_caller, invoice.id, amount_minor=2000, method=PaymentMethod.cash)
    db.refresh(invoice)
    assert invoice.status == InvoiceStatus.partially_paid
    assert invoice.amount_paid_minor == 2000

    settled = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=500)
    record_payment(db, admin_caller, settled.id, amount_minor=500, method=PaymentMethod.card)
    db.refresh(settled)
    assert settled.status == InvoiceStatus.paid
    assert settled.paid_at is not None
    assert payment_count(db) == 2


def test_who_may_pay(db, issued_invoice, patient_caller, frontdesk_caller, make_patient):
    stranger = caller_for_user(db, make_patient("Stranger").user)
    with pytest.raises(AccessDenied):
        record_payment(db, stranger, issued_invoice.id, amount_minor=100, method=PaymentMethod.cash)
    with pytest.raises(AccessDenied):
        record_payment(
            db, frontdesk_caller, issued_invoice.id, amount_minor=100, method=PaymentMethod.cash
        )

    payment = record_payment(
        db,
        patient_caller,
        issued_invoice.id,
        amount_minor=100,
        method=PaymentMethod.mobile_money,
        transaction_ref="MPESA-123",
    )
    assert payment.received_by_user_id == patient_caller.user_id
    assert payment.transaction_ref == "MPESA-123"


def test_payment_event_is_published(db, admin_caller, issued_invoice):
    bus = EventBus()
    received = []
    bus.subscribe(PaymentRecorded, received.append)
    payment = record_payment(
        db, admin_caller, issued_invoice.id, amount_minor=2000, method=PaymentMethod.cash, events=bus
    )
    assert len(received) == 1
    assert received[0].payment_id == payment.id
    assert received[0].amount == Money(2000, "KES")


def test_stale_paid_amount_is_rejected(db, admin_caller, issued_invoice, monkeypatch):
    original = invoices._lock_invoice

    def lock_then_race(session, invoice_id):
        invoice = original(session, invoice_id)
        session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(amount_paid_minor=Invoice.amount_paid_minor + 100)
            .execution_options(synchronize_session=False)
        )
        return invoice

    monkeypatch.setattr(invoices, "_lock_invoice", lock_then_race)
    with pytest.raises(ConcurrentUpdate):
        record_payment(db, admin_caller, issued_invoice.id, amount_minor=2000, method=PaymentMethod.cash)

    db.refresh(issued_invoice)
    assert issued_invoice.amount_paid_minor == 0
    assert issued_invoice.status == InvoiceStatus.issued
    assert payment_count(db) == 0


def test_cancel_rules(db, admin_caller, issued_invoice, patient):
    record_payment(db, admin_caller, issued_invoice.id, amount_minor=100, method=PaymentMethod.cash)
    with pytest.raises(InvoiceHasPayments):
        cancel_invoice(db, admin_caller, issued_invoice.id)

    other = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=900)
    issue_invoice(db, admin_caller, other.id)
    cancelled = cancel_invoice(db, admin_caller, other.id)
    assert cancelled.status == InvoiceStatus.cancelled
    with pytest.raises(InvoiceNotModifiable):
        record_payment(db, admin_caller, other.id, amount_minor=100, method=PaymentMethod.cash)


def test_only_drafts_can_be_deleted(db, admin_caller, issued_invoice, patient):
    with pytest.raises(CannotDeleteNonDraftInvoice):
        soft_delete_invoice(db, admin_caller, issued_invoice.id)

    draft = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=300)
    soft_delete_invoice(db, admin_caller, draft.id)
    with pytest.raises(InvoiceNotFound):
        get_invoice(db, draft.id)


def test_overdue_sweep(db, admin_caller, frontdesk_caller, patient):
    invoice = create_invoice(
        db, admin_caller, patient_id=patient.id, total_minor=3000, due_date=date(2025, 1, 31)
    )
    issue_invoice(db, admin_caller, invoice.id)
    current = create_invoice(
        db, admin_caller, patient_id=patient.id, total_minor=3000, due_date=date(2025, 3, 31)
    )
    issue_invoice(db, admin_caller, current.id)

    with pytest.raises(AccessDenied):
        mark_overdue_invoices(db, frontdesk_caller, as_of=date(2025, 2, 15))

    marked = mark_overdue_invoices(db, admin_caller, as_of=date(2025, 2, 15))
    assert [item.id for item in marked] == [invoice.id]
    assert invoice.status == InvoiceStatus.overdue
    assert current.status == InvoiceStatus.issued

    record_payment(db, admin_caller, invoice.id, amount_minor=1000, method=PaymentMethod.bank_transfer)
    assert invoice.status == InvoiceStatus.partially_paid
