from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.invoice import InvoiceStatus, PaymentMethod


class PaymentCreate(BaseModel):
    amount_minor: int
    method: PaymentMethod
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    transaction_ref: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount_minor: int
    currency: str
    method: PaymentMethod
    paid_at: datetime
    transaction_ref: Optional[str] = None
    notes: Optional[str] = None
    received_by_user_id: int


class InvoiceCreate(BaseModel):
    patient_id: int
    total_minor: int
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    visit_id: Optional[int] = None
    description: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    patient_id: int
    visit_id: Optional[int] = None
    description: Optional[str] = None
    status: InvoiceStatus
    total_minor: int
    amount_paid_minor: int
    balance_minor: int
    currency: str
    notes: Optional[str] = None
    issued_at: Optional[datetime] = None
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    payments: list[PaymentOut] = []


class BalanceOut(BaseModel):
    invoice_id: int
    currency: str
    balance_minor: int


class OverdueRunOut(BaseModel):
    as_of: date
    invoice_ids: list[int]
