import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import Appointment, AppointmentStatus
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER
from clinic_scheduler.services import notifications
from clinic_scheduler.services.errors import InvalidStateTransitionError, NotFoundError, UnauthorizedError
from clinic_scheduler.services.lifecycle import is_terminal, transition
from clinic_scheduler.services.locks import provider_transaction
from clinic_scheduler.services.notifications import NotificationEvent
from clinic_scheduler.services.waitlist import PromotionResult, promote_from_waitlist

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    AppointmentStatus.CONFIRMED_BY_PROVIDER: 'You have successfully confirmed the appointment for {patient}.',
    AppointmentStatus.CANCELLED_BY_PROVIDER: 'You have declined the appointment for {patient}.',
    AppointmentStatus.COMPLETED: 'The appointment with {patient} has been marked as completed.',
}


@dataclass
class StatusChangeResult:
    appointment: Appointment
    previous_status: AppointmentStatus
    promoted_appointment: Appointment | None = None
    message: str = ''
    notifications: list[NotificationEvent] = field(default_factory=list)


def _load_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError(f'Appointment with ID {appointment_id} not found.')
    return appointment


def _promote_if_upcoming(db: Session, appointment: Appointment, now: datetime) -> PromotionResult:
    if appointment.appointment_datetime <= now:
        logger.info('Freed slot %s of appointment %s is in the past, skipping waitlist',
                    appointment.appointment_datetime, appointment.id)
        return PromotionResult()
    return promote_from_waitlist(db, appointment)


def cancel(db: Session, appointment_id: int, requester_id: int, now: datetime | None = None) -> StatusChangeResult:
    """Patient-initiated cancellation followed by waitlist promotion.

    Cancellation and promotion are committed together; a failure in either
    leaves both undone.
    """
    now = now or datetime.now()
    logger.info('Patient %s attempting to cancel appointment %s', requester_id, appointment_id)

    appointment = _load_appointment(db, appointment_id)
    with provider_transaction(db, appointment.provider_id):
        db.refresh(appointment)

        if appointment.patient_id != requester_id:
            logger.warning('Patient %s attempted to cancel appointment %s they do not own', requester_id, appointment_id)
            raise UnauthorizedError('You are not authorized to cancel this appointment.')

        status = appointment.current_status
        if is_terminal(status):
            raise InvalidStateTransitionError('Cannot cancel a completed or already cancelled appointment.')
        if status == AppointmentStatus.CONFIRMED_BY_PROVIDER:
            raise InvalidStateTransitionError(
                'Cannot cancel a provider-confirmed appointment. Please contact the clinic directly.'
            )

        previous = transition(appointment, AppointmentStatus.CANCELLED_BY_PATIENT, ROLE_PATIENT)
        db.flush()
        promotion = _promote_if_upcoming(db, appointment, now)

    logger.info('Appointment %s cancelled by patient', appointment_id)

    events = [
        NotificationEvent(
            recipient_address=appointment.provider.email,
            template_kind=notifications.PATIENT_CANCELLATION,
            context=notifications.appointment_context(appointment),
        ),
        *promotion.notifications,
    ]
    return StatusChangeResult(
        appointment=appointment,
        previous_status=previous,
        promoted_appointment=promotion.appointment,
        message='Appointment cancelled successfully.',
        notifications=events,
    )


def update_status(
    db: Session,
    provider_id: int,
    appointment_id: int,
    new_status: AppointmentStatus,
    now: datetime | None = None,
) -> StatusChangeResult:
    """Provider confirms, completes or declines one of their appointments."""
    now = now or datetime.now()
    new_status = AppointmentStatus(new_status)
    logger.info('Provider %s attempting to move appointment %s to %s', provider_id, appointment_id, new_status.value)

    appointment = _load_appointment(db, appointment_id)
    if appointment.provider_id != provider_id:
        raise NotFoundError(f'Appointment not found with ID: {appointment_id} for this provider.')

    promotion = PromotionResult()
    with provider_transaction(db, provider_id):
        db.refresh(appointment)
        current = appointment.current_status

        if (
            new_status == AppointmentStatus.CANCELLED_BY_PROVIDER
            and not is_terminal(current)
            and current != AppointmentStatus.SCHEDULED
        ):
            logger.warning('Provider %s attempted to decline appointment %s in state %s',
                           provider_id, appointment_id, current.value)
            raise InvalidStateTransitionError('Can only decline an appointment that is in SCHEDULED state.')

        previous = transition(appointment, new_status, ROLE_PROVIDER)
        db.flush()
        if new_status == AppointmentStatus.CANCELLED_BY_PROVIDER:
            promotion = _promote_if_upcoming(db, appointment, now)

    logger.info('Appointment %s status updated to %s', appointment_id, new_status.value)

    events: list[NotificationEvent] = []
    if new_status == AppointmentStatus.CONFIRMED_BY_PROVIDER:
        events.append(NotificationEvent(
            recipient_address=appointment.patient.email,
            template_kind=notifications.PROVIDER_CONFIRMATION,
            context=notifications.appointment_context(appointment),
        ))
    elif new_status == AppointmentStatus.CANCELLED_BY_PROVIDER:
        events.append(NotificationEvent(
            recipient_address=appointment.patient.email,
            template_kind=notifications.PROVIDER_CANCELLATION,
            context=notifications.appointment_context(appointment),
        ))
    events.extend(promotion.notifications)

    patient_name = appointment.patient.full_name if appointment.patient else 'the patient'
    return StatusChangeResult(
        appointment=appointment,
        previous_status=previous,
        promoted_appointment=promotion.appointment,
        message=STATUS_MESSAGES[new_status].format(patient=patient_name),
        notifications=events,
    )
