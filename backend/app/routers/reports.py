from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_caller
from app.schemas.reports import DashboardMetricsOut, FinancialReportOut, OutstandingBalanceOut
from app.services.authorization import Caller
from app.services.reports import (
    dashboard_metrics,
    generate_financial_report,
    outstanding_balance,
    require_report_access,
)

router = APIRouter(prefix="/reports", tags=["reports"])


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


@router.get("/financial", response_model=FinancialReportOut)
def financial_report(
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    require_report_access(db, caller)
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must be on or after start")
    # end is inclusive for callers; the service works on a half-open window.
    report = generate_financial_report(db, _start_of(start), _start_of(end + timedelta(days=1)))
    return FinancialReportOut(
        start=start,
        end=end,
        currency=report.currency,
        total_invoices=report.total_invoices,
        total_amount_minor=report.total_amount.amount_minor,
        paid_amount_minor=report.paid_amount.amount_minor,
        outstanding_amount_minor=report.outstanding_amount.amount_minor,
    )


@router.get("/outstanding", response_model=OutstandingBalanceOut)
def outstanding(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    require_report_access(db, caller)
    balance = outstanding_balance(db)
    return OutstandingBalanceOut(currency=balance.currency, outstanding_minor=balance.amount_minor)


@router.get("/dashboard", response_model=DashboardMetricsOut)
def dashboard(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    metrics = dashboard_metrics(db, caller)
    return DashboardMetricsOut(
        as_of=metrics.as_of,
        currency=metrics.outstanding.currency,
        today_revenue_minor=metrics.today_revenue.amount_minor,
        month_revenue_minor=metrics.month_revenue.amount_minor,
        today_appointments=metrics.today_appointments,
        week_appointments=metrics.week_appointments,
        new_patients_this_week=metrics.new_patients_this_week,
        outstanding_minor=metrics.outstanding.amount_minor,
    )
