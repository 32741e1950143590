from datetime import datetime, timezone

import pytest

from app.models.appointment import AppointmentStatus
from app.services.appointments import (
    TERMINAL_STATUSES,
    cancel_appointment,
    create_appointment,
    is_allowed_transition,
    schedule_appointment,
    transition_appointment,
    validate_transition,
)
from app.services.authorization import caller_for_user
from app.services.errors import AccessDenied, DoctorNotFound, InvalidTransition, MissingScheduledTime

S = AppointmentStatus
SCHEDULED_AT = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

LEGAL_MOVES = {
    (S.requested, S.scheduled),
    (S.requested, S.cancelled),
    (S.scheduled, S.confirmed),
    (S.scheduled, S.cancelled),
    (S.scheduled, S.no_show),
    (S.confirmed, S.completed),
    (S.confirmed, S.cancelled),
    (S.confirmed, S.no_show),
}


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("requested", list(S))
def test_transition_table_is_closed(current, requested):
    legal = (current, requested) in LEGAL_MOVES
    assert is_allowed_transition(current, requested) is legal
    if legal:
        validate_transition(current, requested)
    else:
        with pytest.raises(InvalidTransition) as exc:
            validate_transition(current, requested)
        assert exc.value.current == current.value
        assert exc.value.requested == requested.value


PATH_TO = {
    S.requested: [],
    S.scheduled: [S.scheduled],
    S.confirmed: [S.scheduled, S.confirmed],
    S.completed: [S.scheduled, S.confirmed, S.completed],
    S.cancelled: [S.cancelled],
    S.no_show: [S.scheduled, S.no_show],
}

ILLEGAL_MOVES = [
    (current, requested)
    for current in S
    for requested in S
    if (current, requested) not in LEGAL_MOVES
]


@pytest.mark.parametrize(("current", "requested"), ILLEGAL_MOVES)
def test_illegal_move_leaves_stored_status(db, admin_caller, patient, doctor, current, requested):
    appt = create_appointment(db, admin_caller, patient_id=patient.id, doctor_id=doctor.id)
    for step in PATH_TO[current]:
        transition_appointment(db, admin_caller, appt.id, step, scheduled_time=SCHEDULED_AT)
    db.refresh(appt)
    assert appt.status == current

    with pytest.raises(InvalidTransition):
        transition_appointment(
            db, admin_caller, appt.id, requested, notes="ignored", scheduled_time=SCHEDULED_AT
        )

    db.refresh(appt)
    assert appt.status == current
    assert appt.notes is None


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.cancelled, S.no_show, S.completed}


def test_patient_requests_appointment_for_themself(db, patient_caller, patient, doctor):
    appt = create_appointment(
        db, patient_caller, patient_id=None, doctor_id=doctor.id, reason="Toothache"
    )
    assert appt.status == S.requested
    assert appt.patient_id == patient.id
    assert appt.scheduled_time is None


def test_patient_cannot_book_for_someone_else(db, patient_caller, make_patient, doctor):
    other = make_patient("Other Patient")
    with pytest.raises(AccessDenied) as exc:
        create_appointment(db, patient_caller, patient_id=other.id, doctor_id=doctor.id)
    assert exc.value.reason == "NOT_OWNER"


def test_booking_with_deleted_doctor_is_rejected(db, patient_caller, doctor):
    doctor.deleted_at = datetime.now(timezone.utc)
    db.commit()
    with pytest.raises(DoctorNotFound):
        create_appointment(db, patient_caller, patient_id=None, doctor_id=doctor.id)


def test_schedule_requires_time_and_keeps_status(db, patient_caller, frontdesk_caller, doctor):
    appt = create_appointment(db, patient_caller, patient_id=None, doctor_id=doctor.id)
    with pytest.raises(MissingScheduledTime):
        schedule_appointment(db, frontdesk_caller, appt.id, scheduled_time=None)
    db.refresh(appt)
    assert appt.status == S.requested
    assert appt.scheduled_time is None


def test_full_lifecycle_and_notes_override(db, patient_caller, frontdesk_caller, doctor):
    doctor_caller = caller_for_user(db, doctor.user)
    appt = create_appointment(
        db, patient_caller, patient_id=None, doctor_id=doctor.id, notes="Prefers mornings"
    )

    appt = schedule_appointment(db, frontdesk_caller, appt.id, scheduled_time=SCHEDULED_AT)
    assert appt.status == S.scheduled
    assert appt.scheduled_time is not None
    assert appt.notes == "Prefers mornings"

    appt = transition_appointment(db, frontdesk_caller, appt.id, S.confirmed, notes="Confirmed by phone")
    assert appt.status == S.confirmed
    assert appt.notes == "Confirmed by phone"

    appt = transition_appointment(db, doctor_caller, appt.id, S.completed)
    assert appt.status == S.completed
    assert appt.notes == "Confirmed by phone"

    with pytest.raises(InvalidTransition):
        cancel_appointment(db, patient_caller, appt.id)
    db.refresh(appt)
    assert appt.status == S.completed


def test_patient_may_only_cancel(db, patient_caller, patient, doctor):
    appt = create_appointment(db, patient_caller, patient_id=None, doctor_id=doctor.id)
    with pytest.raises(AccessDenied):
        schedule_appointment(db, patient_caller, appt.id, scheduled_time=SCHEDULED_AT)

    appt = cancel_appointment(db, patient_caller, appt.id, notes="Feeling better")
    assert appt.status == S.cancelled
    assert appt.cancelled_at is not None
    assert appt.cancelled_by_user_id == patient.user_id


def test_frontdesk_cannot_complete(db, patient_caller, frontdesk_caller, doctor):
    appt = create_appointment(db, patient_caller, patient_id=None, doctor_id=doctor.id)
    schedule_appointment(db, frontdesk_caller, appt.id, scheduled_time=SCHEDULED_AT)
    transition_appointment(db, frontdesk_caller, appt.id, S.confirmed)
    with pytest.raises(AccessDenied):
        transition_appointment(db, frontdesk_caller, appt.id, S.completed)
    db.refresh(appt)
    assert appt.status == S.confirmed


def test_other_doctor_cannot_touch_appointment(db, patient_caller, doctor, make_doctor):
    appt = create_appointment(db, patient_caller, patient_id=None, doctor_id=doctor.id)
    other = make_doctor("Other Doctor")
    with pytest.raises(AccessDenied) as exc:
        transition_appointment(db, caller_for_user(db, other.user), appt.id, S.cancelled)
    assert exc.value.reason == "NOT_OWNER"
