from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.appointment import Appointment, AppointmentStatus
from app.models.invoice import Invoice, InvoiceStatus, Payment
from app.models.patient import Patient
from app.services.authorization import AccessTarget, Action, Caller, Resource, require_access
from app.services.invoices import OUTSTANDING_STATUSES
from app.services.money import Money


@dataclass(frozen=True)
class FinancialReport:
    start: datetime
    end: datetime
    total_invoices: int
    total_amount: Money
    paid_amount: Money
    outstanding_amount: Money

    @property
    def currency(self) -> str:
        return self.total_amount.currency


def require_report_access(db: Session, caller: Caller) -> None:
    require_access(db, caller, Action.read, AccessTarget(Resource.report))


def outstanding_balance(db: Session, *, currency: str | None = None) -> Money:
    currency = (currency or settings.currency).upper()
    value = db.scalar(
        select(func.coalesce(func.sum(Invoice.total_minor - Invoice.amount_paid_minor), 0)).where(
            Invoice.deleted_at.is_(None),
            Invoice.currency == currency,
            Invoice.status.in_(list(OUTSTANDING_STATUSES)),
        )
    )
    return Money(int(value or 0), currency)


def generate_financial_report(
    db: Session,
    start: datetime,
    end: datetime,
    *,
    currency: str | None = None,
) -> FinancialReport:
    """Summarise invoices created in ``[start, end)``.

    Cancelled and deleted invoices are left out. ``paid_amount`` is the sum of
    payments recorded against the included invoices, whenever they were taken;
    ``outstanding_amount`` is the unpaid balance of those still awaiting
    payment.
    """
    currency = (currency or settings.currency).upper()
    in_window = (
        Invoice.deleted_at.is_(None),
        Invoice.status != InvoiceStatus.cancelled,
        Invoice.currency == currency,
        Invoice.created_at >= start,
        Invoice.created_at < end,
    )
    count, total = db.execute(
        select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_minor), 0)).where(
            *in_window
        )
    ).one()
    paid = db.scalar(
        select(func.coalesce(func.sum(Payment.amount_minor), 0))
        .select_from(Payment)
        .join(Invoice, Payment.invoice_id == Invoice.id)
        .where(*in_window)
    )
    outstanding = db.scalar(
        select(
            func.coalesce(func.sum(Invoice.total_minor - Invoice.amount_paid_minor), 0)
        ).where(*in_window, Invoice.status.in_(list(OUTSTANDING_STATUSES)))
    )
    return FinancialReport(
        start=start,
        end=end,
        total_invoices=int(count or 0),
        total_amount=Money(int(total or 0), currency),
        paid_amount=Money(int(paid or 0), currency),
        outstanding_amount=Money(int(outstanding or 0), currency),
    )


@dataclass(frozen=True)
class DashboardMetrics:
    as_of: datetime
    today_revenue: Money
    month_revenue: Money
    today_appointments: int
    week_appointments: int
    new_patients_this_week: int
    outstanding: Money


BOOKED_STATUSES = [AppointmentStatus.scheduled, AppointmentStatus.confirmed]


def _revenue(db: Session, start: datetime, end: datetime, currency: str) -> Money:
    value = db.scalar(
        select(func.coalesce(func.sum(Payment.amount_minor), 0)).where(
            Payment.currency == currency,
            Payment.paid_at >= start,
            Payment.paid_at < end,
        )
    )
    return Money(int(value or 0), currency)


def _booked_appointments(db: Session, start: datetime, end: datetime) -> int:
    value = db.scalar(
        select(func.count(Appointment.id)).where(
            Appointment.deleted_at.is_(None),
            Appointment.status.in_(BOOKED_STATUSES),
            Appointment.scheduled_time >= start,
            Appointment.scheduled_time < end,
        )
    )
    return int(value or 0)


def dashboard_metrics(
    db: Session,
    caller: Caller,
    *,
    now: datetime | None = None,
    currency: str | None = None,
) -> DashboardMetrics:
    """Headline figures for the admin dashboard.

    Days and months are taken in UTC. Revenue counts payments taken in the
    period; appointment counts only include SCHEDULED and CONFIRMED bookings,
    and the week runs seven days forward from the start of today.
    """
    require_report_access(db, caller)
    currency = (currency or settings.currency).upper()
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    month_start = today.replace(day=1)
    next_month = (month_start + timedelta(days=32)).replace(day=1)

    new_patients = db.scalar(
        select(func.count(Patient.id)).where(
            Patient.deleted_at.is_(None),
            Patient.created_at >= now - timedelta(days=7),
        )
    )
    return DashboardMetrics(
        as_of=now,
        today_revenue=_revenue(db, today, today + timedelta(days=1), currency),
        month_revenue=_revenue(db, month_start, next_month, currency),
        today_appointments=_booked_appointments(db, today, today + timedelta(days=1)),
        week_appointments=_booked_appointments(db, today, today + timedelta(days=7)),
        new_patients_this_week=int(new_patients or 0),
        outstanding=outstanding_balance(db, currency=currency),
    )
