"""Booking and rescheduling of appointments.

Both paths run their slot-uniqueness and working-hours checks together with
the write while holding the provider lock (see ``services.locks``). The partial
unique index on ``appointments`` backs the same invariant at the database
level; a violation surfacing from it is reported as a slot conflict.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
)
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER, User
from clinic_scheduler.services import notifications
from clinic_scheduler.services.availability import find_patient, find_provider
from clinic_scheduler.services.errors import (
    DuplicateBookingError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
    OutsideAvailabilityError,
    SlotConflictError,
    UnauthorizedError,
)
from clinic_scheduler.services.lifecycle import is_terminal
from clinic_scheduler.services.locks import provider_transaction
from clinic_scheduler.services.notifications import NotificationEvent
from clinic_scheduler.services.slots import get_provider_rules, is_projected_slot_start

logger = logging.getLogger(__name__)

PATIENT_LOCKED_STATUSES = frozenset({
    AppointmentStatus.CONFIRMED_BY_PROVIDER,
    AppointmentStatus.COMPLETED,
})


@dataclass
class BookingResult:
    appointment: Appointment
    notifications: list[NotificationEvent] = field(default_factory=list)


@dataclass
class RescheduleResult:
    appointment: Appointment
    previous_datetime: datetime
    notifications: list[NotificationEvent] = field(default_factory=list)


def normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(microsecond=0)


def find_active_appointment(
    db: Session,
    provider_id: int,
    slot_datetime: datetime,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.appointment_datetime == slot_datetime,
        Appointment.status.in_([status.value for status in ACTIVE_STATUSES]),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query.first()


def ensure_slot_free(
    db: Session,
    provider_id: int,
    patient_id: int,
    slot_datetime: datetime,
    exclude_appointment_id: int | None = None,
) -> None:
    existing = find_active_appointment(db, provider_id, slot_datetime, exclude_appointment_id)
    if existing is None:
        return

    if existing.patient_id == patient_id:
        logger.warning(
            'Patient %s tried to book their own existing slot %s with provider %s',
            patient_id, slot_datetime, provider_id,
        )
        raise DuplicateBookingError(
            'You have already booked this exact time slot. To make changes, please cancel or reschedule.'
        )

    logger.warning('Slot %s of provider %s is already taken, offering waitlist', slot_datetime, provider_id)
    raise SlotConflictError('The selected slot is already booked. You can join the waitlist for this day.')


def ensure_within_availability(db: Session, provider: User, slot_datetime: datetime) -> None:
    rules = get_provider_rules(db, provider.id)
    if not is_projected_slot_start(rules, provider.slot_duration_minutes, slot_datetime):
        logger.warning('Provider %s is not available at %s', provider.id, slot_datetime)
        raise OutsideAvailabilityError('The provider is not available for the selected day or time.')


def ensure_future(slot_datetime: datetime, now: datetime) -> None:
    if slot_datetime <= now:
        raise InvalidInputError('Appointments must be scheduled in the future.')


def create_confirmed_slot(db: Session, patient_id: int, provider_id: int, slot_datetime: datetime) -> Appointment:
    """Insert a SCHEDULED appointment for a slot already known to be free.

    No availability re-check happens here; the caller holds the provider lock
    and commits.
    """
    appointment = Appointment(
        patient_id=patient_id,
        provider_id=provider_id,
        appointment_datetime=slot_datetime,
        status=AppointmentStatus.SCHEDULED.value,
    )
    db.add(appointment)
    db.flush()
    return appointment


def book_appointment(
    db: Session,
    patient_id: int,
    provider_id: int,
    requested_datetime: datetime,
    now: datetime | None = None,
) -> BookingResult:
    now = now or datetime.now()
    requested = normalize_datetime(requested_datetime)
    logger.info('Booking request by patient %s with provider %s at %s', patient_id, provider_id, requested)

    patient = find_patient(db, patient_id)
    provider = find_provider(db, provider_id)
    ensure_future(requested, now)

    try:
        with provider_transaction(db, provider_id):
            ensure_slot_free(db, provider_id, patient_id, requested)
            ensure_within_availability(db, provider, requested)
            appointment = create_confirmed_slot(db, patient_id, provider_id, requested)
    except IntegrityError as exc:
        logger.warning('Concurrent booking of provider %s at %s rejected by the database', provider_id, requested)
        raise SlotConflictError(
            'The selected slot is already booked. You can join the waitlist for this day.'
        ) from exc

    db.refresh(appointment)
    logger.info('Booked appointment %s for patient %s', appointment.id, patient_id)

    events = [
        NotificationEvent(
            recipient_address=patient.email,
            template_kind=notifications.BOOKING_CONFIRMATION,
            context=notifications.appointment_context(appointment),
        ),
    ]
    return BookingResult(appointment=appointment, notifications=events)


def check_reschedule_permission(appointment: Appointment, requester_id: int, requester_role: str) -> None:
    status = appointment.current_status

    if requester_role == ROLE_PATIENT:
        if appointment.patient_id != requester_id:
            raise UnauthorizedError('You can only reschedule your own appointments.')
        if status in PATIENT_LOCKED_STATUSES or is_terminal(status):
            raise InvalidStateTransitionError(
                'Cannot reschedule a completed, confirmed or cancelled appointment. Please contact the clinic.'
            )
    elif requester_role == ROLE_PROVIDER:
        if appointment.provider_id != requester_id:
            raise UnauthorizedError('You can only reschedule appointments booked with you.')
        if is_terminal(status):
            raise InvalidStateTransitionError(f'Cannot reschedule an appointment that is {status.value}.')
    else:
        raise InvalidInputError(f'Unknown requester role: {requester_role}.')


def reschedule(
    db: Session,
    appointment_id: int,
    requester_id: int,
    requester_role: str,
    new_datetime: datetime,
    now: datetime | None = None,
) -> RescheduleResult:
    """Move an existing appointment to ``new_datetime`` keeping its identity."""
    now = now or datetime.now()
    requested = normalize_datetime(new_datetime)
    logger.info('%s %s attempting to reschedule appointment %s to %s',
                requester_role, requester_id, appointment_id, requested)

    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError(f'Appointment with ID {appointment_id} not found.')

    provider_id = appointment.provider_id
    try:
        with provider_transaction(db, provider_id):
            db.refresh(appointment)
            check_reschedule_permission(appointment, requester_id, requester_role)

            previous = appointment.appointment_datetime
            if requested != previous:
                ensure_future(requested, now)
                ensure_slot_free(
                    db, provider_id, appointment.patient_id, requested,
                    exclude_appointment_id=appointment.id,
                )
                ensure_within_availability(db, appointment.provider, requested)
                appointment.appointment_datetime = requested
                db.flush()
    except IntegrityError as exc:
        raise SlotConflictError('The proposed new time slot is already booked.') from exc

    if requested == previous:
        logger.info('Appointment %s already at %s, nothing to move', appointment_id, requested)
        return RescheduleResult(appointment=appointment, previous_datetime=previous)

    db.refresh(appointment)
    logger.info('Appointment %s moved from %s to %s', appointment_id, previous, requested)

    context = notifications.appointment_context(
        appointment,
        previous_datetime=notifications.format_datetime(previous),
        rescheduled_by=requester_role,
    )
    recipient = appointment.provider if requester_role == ROLE_PATIENT else appointment.patient
    events = [
        NotificationEvent(
            recipient_address=recipient.email,
            template_kind=notifications.APPOINTMENT_RESCHEDULED,
            context=context,
        ),
    ]
    return RescheduleResult(appointment=appointment, previous_datetime=previous, notifications=events)
