from datetime import datetime, timezone

import pytest

from app.core.ids import DoctorId, PatientId, UserId
from app.models.appointment import AppointmentStatus
from app.models.user import Role
from app.services.authorization import (
    AccessTarget,
    Action,
    Caller,
    DenialReason,
    Resource,
    authorize,
    can_set_appointment_status,
    decide,
)
from app.services.visits import create_visit

PATIENT = Caller(user_id=UserId(1), role=Role.patient, patient_id=PatientId(10))
DOCTOR = Caller(user_id=UserId(2), role=Role.doctor, doctor_id=DoctorId(20))
FRONTDESK = Caller(user_id=UserId(3), role=Role.frontdesk)
ADMIN = Caller(user_id=UserId(4), role=Role.admin)


def target(resource, patient_id=10, doctor_id=20):
    return AccessTarget(resource, patient_id=patient_id, doctor_id=doctor_id)


@pytest.mark.parametrize("resource", list(Resource))
@pytest.mark.parametrize("action", list(Action))
def test_admin_is_granted_everything(resource, action):
    assert decide(ADMIN, action, target(resource))


@pytest.mark.parametrize(
    ("action", "resource"),
    [
        (Action.read, Resource.patient),
        (Action.write, Resource.patient),
        (Action.read, Resource.appointment),
        (Action.write, Resource.appointment),
        (Action.read, Resource.visit),
        (Action.read, Resource.procedure),
        (Action.read, Resource.medical_record),
        (Action.read, Resource.invoice),
        (Action.pay, Resource.invoice),
    ],
)
def test_patient_owns_their_records(action, resource):
    assert decide(PATIENT, action, target(resource))
    denied = decide(PATIENT, action, target(resource, patient_id=11))
    assert not denied
    assert denied.reason == DenialReason.not_owner


@pytest.mark.parametrize(
    ("action", "resource"),
    [
        (Action.write, Resource.visit),
        (Action.write, Resource.procedure),
        (Action.write, Resource.medical_record),
        (Action.write, Resource.invoice),
        (Action.read, Resource.doctor),
        (Action.read, Resource.report),
    ],
)
def test_patient_role_limits(action, resource):
    decision = decide(PATIENT, action, target(resource))
    assert decision.reason == DenialReason.role_not_permitted


@pytest.mark.parametrize(
    "resource",
    [Resource.appointment, Resource.visit, Resource.procedure, Resource.medical_record],
)
def test_doctor_clinical_access_follows_ownership(resource):
    assert decide(DOCTOR, Action.write, target(resource))
    denied = decide(DOCTOR, Action.read, target(resource, doctor_id=21))
    assert denied.reason == DenialReason.not_owner


def test_doctor_profile_and_money():
    assert decide(DOCTOR, Action.write, target(Resource.doctor))
    assert decide(DOCTOR, Action.read, target(Resource.invoice)).reason == DenialReason.role_not_permitted
    assert decide(DOCTOR, Action.read, target(Resource.report)).reason == DenialReason.role_not_permitted


def test_doctor_patient_profile_needs_treatment_relationship():
    denied = decide(DOCTOR, Action.read, target(Resource.patient))
    assert denied.reason == DenialReason.no_treatment_relationship
    assert decide(DOCTOR, Action.read, target(Resource.patient), has_treatment_relationship=True)


@pytest.mark.parametrize(
    ("action", "resource", "granted"),
    [
        (Action.read, Resource.invoice, True),
        (Action.pay, Resource.invoice, False),
        (Action.write, Resource.invoice, False),
        (Action.read, Resource.appointment, True),
        (Action.write, Resource.appointment, True),
        (Action.read, Resource.visit, False),
        (Action.read, Resource.medical_record, False),
        (Action.read, Resource.patient, False),
        (Action.read, Resource.report, False),
    ],
)
def test_frontdesk_matrix(action, resource, granted):
    decision = decide(FRONTDESK, action, target(resource))
    assert bool(decision) is granted
    if not granted:
        assert decision.reason == DenialReason.role_not_permitted


@pytest.mark.parametrize(
    ("caller", "allowed"),
    [
        (PATIENT, {AppointmentStatus.cancelled}),
        (
            FRONTDESK,
            {
                AppointmentStatus.scheduled,
                AppointmentStatus.confirmed,
                AppointmentStatus.cancelled,
                AppointmentStatus.no_show,
            },
        ),
        (DOCTOR, set(AppointmentStatus)),
        (ADMIN, set(AppointmentStatus)),
    ],
)
def test_appointment_status_targets_per_role(caller, allowed):
    for status in AppointmentStatus:
        assert bool(can_set_appointment_status(caller, status)) is (status in allowed)


def test_treatment_relationship_is_looked_up(db, doctor_caller, patient):
    before = authorize(db, doctor_caller, Action.read, patient)
    assert before.reason == DenialReason.no_treatment_relationship

    create_visit(
        db, doctor_caller, patient_id=patient.id, visit_date=datetime(2025, 1, 10, tzinfo=timezone.utc)
    )
    assert authorize(db, doctor_caller, Action.read, patient)
