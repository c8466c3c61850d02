from datetime import datetime

import pytest

from clinic_scheduler.models.appointment import Appointment, AppointmentStatus
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER
from clinic_scheduler.services import notifications
from clinic_scheduler.services.booking import book_appointment, reschedule
from clinic_scheduler.services.errors import (
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
    OutsideAvailabilityError,
    SlotConflictError,
    UnauthorizedError,
)
from conftest import SCENARIO_MONDAY, SCENARIO_NOW, at


@pytest.fixture
def booked(db, monday_schedule, patient) -> Appointment:
    return book_appointment(db, patient.id, monday_schedule.id, at(SCENARIO_MONDAY, 10), now=SCENARIO_NOW).appointment


def set_status(db, appointment: Appointment, status: AppointmentStatus) -> None:
    appointment.status = status.value
    db.commit()


def test_patient_reschedule_keeps_identity_and_moves_time(db, booked, patient) -> None:
    original_id = booked.id

    result = reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    assert result.appointment.id == original_id
    assert result.appointment.appointment_datetime == datetime(2025, 3, 10, 11, 0)
    assert result.previous_datetime == datetime(2025, 3, 10, 10, 0)
    assert result.appointment.status == AppointmentStatus.SCHEDULED.value
    assert db.query(Appointment).count() == 1


def test_patient_reschedule_notifies_provider_with_previous_time(db, booked, patient, monday_schedule) -> None:
    result = reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    assert len(result.notifications) == 1
    event = result.notifications[0]
    assert event.recipient_address == monday_schedule.email
    assert event.template_kind == notifications.APPOINTMENT_RESCHEDULED
    assert event.context['previous_datetime'] == '2025-03-10T10:00'
    assert event.context['appointment_datetime'] == '2025-03-10T11:00'


def test_provider_reschedule_notifies_patient(db, booked, patient, monday_schedule) -> None:
    result = reschedule(db, booked.id, monday_schedule.id, ROLE_PROVIDER, at(SCENARIO_MONDAY, 9), now=SCENARIO_NOW)

    assert [event.recipient_address for event in result.notifications] == [patient.email]


def test_reschedule_to_same_time_is_a_no_op(db, booked, patient) -> None:
    result = reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 10), now=SCENARIO_NOW)

    assert result.appointment.appointment_datetime == datetime(2025, 3, 10, 10, 0)
    assert result.notifications == []


def test_reschedule_frees_previous_slot(db, booked, patient, other_patient, monday_schedule) -> None:
    reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    result = book_appointment(db, other_patient.id, monday_schedule.id, at(SCENARIO_MONDAY, 10), now=SCENARIO_NOW)

    assert result.appointment.patient_id == other_patient.id


def test_reschedule_into_taken_slot_is_a_conflict(db, booked, patient, other_patient, monday_schedule) -> None:
    book_appointment(db, other_patient.id, monday_schedule.id, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    with pytest.raises(SlotConflictError):
        reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    db.refresh(booked)
    assert booked.appointment_datetime == datetime(2025, 3, 10, 10, 0)


@pytest.mark.parametrize('new_time', [at(SCENARIO_MONDAY, 13), at(SCENARIO_MONDAY, 10, 10)])
def test_reschedule_outside_availability_is_rejected(db, booked, patient, new_time) -> None:
    with pytest.raises(OutsideAvailabilityError):
        reschedule(db, booked.id, patient.id, ROLE_PATIENT, new_time, now=SCENARIO_NOW)


def test_reschedule_into_the_past_is_rejected(db, booked, patient) -> None:
    with pytest.raises(InvalidInputError):
        reschedule(db, booked.id, patient.id, ROLE_PATIENT, datetime(2025, 3, 3, 10, 0), now=SCENARIO_NOW)


def test_patient_cannot_reschedule_confirmed_appointment(db, booked, patient) -> None:
    set_status(db, booked, AppointmentStatus.CONFIRMED_BY_PROVIDER)

    with pytest.raises(InvalidStateTransitionError):
        reschedule(db, booked.id, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)


def test_provider_can_reschedule_confirmed_appointment(db, booked, monday_schedule) -> None:
    set_status(db, booked, AppointmentStatus.CONFIRMED_BY_PROVIDER)

    result = reschedule(db, booked.id, monday_schedule.id, ROLE_PROVIDER, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    assert result.appointment.status == AppointmentStatus.CONFIRMED_BY_PROVIDER.value
    assert result.appointment.appointment_datetime == datetime(2025, 3, 10, 11, 0)


@pytest.mark.parametrize(
    'status',
    [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED_BY_PATIENT, AppointmentStatus.NO_SHOW],
)
def test_terminal_appointments_cannot_be_rescheduled(db, booked, monday_schedule, status) -> None:
    set_status(db, booked, status)

    with pytest.raises(InvalidStateTransitionError):
        reschedule(db, booked.id, monday_schedule.id, ROLE_PROVIDER, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)


def test_only_owners_can_reschedule(db, booked, other_patient, other_provider) -> None:
    with pytest.raises(UnauthorizedError):
        reschedule(db, booked.id, other_patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)

    with pytest.raises(UnauthorizedError):
        reschedule(db, booked.id, other_provider.id, ROLE_PROVIDER, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)


def test_reschedule_unknown_appointment(db, patient) -> None:
    with pytest.raises(NotFoundError):
        reschedule(db, 404, patient.id, ROLE_PATIENT, at(SCENARIO_MONDAY, 11), now=SCENARIO_NOW)
