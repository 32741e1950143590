from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.ids import InvoiceId
from app.db.session import get_db
from app.deps import get_caller, get_event_bus
from app.models.invoice import InvoiceStatus
from app.schemas.invoice import (
    BalanceOut,
    InvoiceCreate,
    InvoiceOut,
    OverdueRunOut,
    PaymentCreate,
    PaymentOut,
)
from app.services.authorization import Caller
from app.services.events import EventBus
from app.services.invoices import (
    cancel_invoice,
    create_invoice,
    invoice_balance,
    issue_invoice,
    list_invoices,
    mark_overdue_invoices,
    read_invoice,
    record_payment,
    soft_delete_invoice,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return create_invoice(db, caller, **payload.model_dump())


@router.get("", response_model=list[InvoiceOut])
def list_all(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    patient_id: int | None = Query(default=None),
    status_filter: InvoiceStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_invoices(
        db, caller, patient_id=patient_id, status=status_filter, limit=limit, offset=offset
    )


@router.post("/overdue", response_model=OverdueRunOut)
def run_overdue(
    as_of: date | None = Query(default=None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    invoices = mark_overdue_invoices(db, caller, as_of=as_of)
    return OverdueRunOut(
        as_of=as_of or date.today(), invoice_ids=[invoice.id for invoice in invoices]
    )


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_one(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_invoice(db, caller, InvoiceId(invoice_id))


@router.get("/{invoice_id}/balance", response_model=BalanceOut)
def balance(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    money = invoice_balance(db, caller, InvoiceId(invoice_id))
    return BalanceOut(invoice_id=invoice_id, currency=money.currency, balance_minor=money.amount_minor)


@router.post("/{invoice_id}/issue", response_model=InvoiceOut)
def issue(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return issue_invoice(db, caller, InvoiceId(invoice_id))


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return cancel_invoice(db, caller, InvoiceId(invoice_id))


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    soft_delete_invoice(db, caller, InvoiceId(invoice_id))


@router.get("/{invoice_id}/payments", response_model=list[PaymentOut])
def list_payments(
    invoice_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_invoice(db, caller, InvoiceId(invoice_id)).payments


@router.post(
    "/{invoice_id}/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED
)
def add_payment(
    invoice_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    events: EventBus = Depends(get_event_bus),
):
    return record_payment(
        db,
        caller,
        InvoiceId(invoice_id),
        amount_minor=payload.amount_minor,
        method=payload.method,
        currency=payload.currency,
        transaction_ref=payload.transaction_ref,
        notes=payload.notes,
        events=events,
    )
