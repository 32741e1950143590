from datetime import date, datetime

from pydantic import BaseModel


class FinancialReportOut(BaseModel):
    start: date
    end: date
    currency: str
    total_invoices: int
    total_amount_minor: int
    paid_amount_minor: int
    outstanding_amount_minor: int


class OutstandingBalanceOut(BaseModel):
    currency: str
    outstanding_minor: int


class DashboardMetricsOut(BaseModel):
    as_of: datetime
    currency: str
    today_revenue_minor: int
    month_revenue_minor: int
    today_appointments: int
    week_appointments: int
    new_patients_this_week: int
    outstanding_minor: int
