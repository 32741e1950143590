from datetime import datetime, time, timedelta, timezone

import pytest

from app.models.invoice import PaymentMethod
from app.services.appointments import cancel_appointment, create_appointment, schedule_appointment
from app.services.errors import AccessDenied
from app.services.invoices import create_invoice, issue_invoice, record_payment
from app.services.money import Money
from app.services.reports import dashboard_metrics


def start_of_today():
    return datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)


def book(db, caller, patient, doctor, when):
    appt = create_appointment(db, caller, patient_id=patient.id, doctor_id=doctor.id)
    return schedule_appointment(db, caller, appt.id, scheduled_time=when)


def test_dashboard_figures(db, admin_caller, patient, doctor):
    today = start_of_today()
    book(db, admin_caller, patient, doctor, today + timedelta(hours=12))
    book(db, admin_caller, patient, doctor, today + timedelta(days=3))
    book(db, admin_caller, patient, doctor, today + timedelta(days=10))
    cancelled = book(db, admin_caller, patient, doctor, today + timedelta(hours=15))
    cancel_appointment(db, admin_caller, cancelled.id)
    create_appointment(db, admin_caller, patient_id=patient.id, doctor_id=doctor.id)

    open_invoice = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=4500)
    issue_invoice(db, admin_caller, open_invoice.id)
    record_payment(db, admin_caller, open_invoice.id, amount_minor=2000, method=PaymentMethod.cash)
    settled = create_invoice(db, admin_caller, patient_id=patient.id, total_minor=500)
    record_payment(db, admin_caller, settled.id, amount_minor=500, method=PaymentMethod.card)

    metrics = dashboard_metrics(db, admin_caller)

    assert metrics.today_revenue == Money(2500, "KES")
    assert metrics.month_revenue == Money(2500, "KES")
    assert metrics.today_appointments == 1
    assert metrics.week_appointments == 2
    assert metrics.new_patients_this_week == 1
    assert metrics.outstanding == Money(2500, "KES")


def test_dashboard_for_a_quiet_day(db, admin_caller, patient):
    later = datetime.now(timezone.utc) + timedelta(days=40)
    metrics = dashboard_metrics(db, admin_caller, now=later)
    assert metrics.today_revenue == Money.zero("KES")
    assert metrics.today_appointments == 0
    assert metrics.new_patients_this_week == 0


def test_dashboard_is_admin_only(db, frontdesk_caller, doctor_caller):
    for caller in (frontdesk_caller, doctor_caller):
        with pytest.raises(AccessDenied):
            dashboard_metrics(db, caller)


def test_dashboard_endpoint(api_client, headers_for, admin_user, frontdesk_user):
    res = api_client.get("/reports/dashboard", headers=headers_for(frontdesk_user))
    assert res.status_code == 403

    res = api_client.get("/reports/dashboard", headers=headers_for(admin_user))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["currency"] == "KES"
    assert body["today_revenue_minor"] == 0
    assert body["outstanding_minor"] == 0
