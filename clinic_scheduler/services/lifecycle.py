import logging

from clinic_scheduler.models.appointment import Appointment, AppointmentStatus
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER
from clinic_scheduler.services.errors import InvalidStateTransitionError, UnauthorizedError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED_BY_PROVIDER,
        AppointmentStatus.CANCELLED_BY_PATIENT,
        AppointmentStatus.CANCELLED_BY_PROVIDER,
    }),
    AppointmentStatus.CONFIRMED_BY_PROVIDER: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED_BY_PROVIDER,
    }),
}

TRANSITION_ACTORS: dict[AppointmentStatus, str] = {
    AppointmentStatus.CONFIRMED_BY_PROVIDER: ROLE_PROVIDER,
    AppointmentStatus.COMPLETED: ROLE_PROVIDER,
    AppointmentStatus.CANCELLED_BY_PROVIDER: ROLE_PROVIDER,
    AppointmentStatus.CANCELLED_BY_PATIENT: ROLE_PATIENT,
}


def is_terminal(status: AppointmentStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(appointment: Appointment, target: AppointmentStatus, actor_role: str) -> AppointmentStatus:
    """Move ``appointment`` to ``target`` or raise without touching it.

    Returns the previous status. The caller is responsible for committing.
    """
    current = appointment.current_status
    target = AppointmentStatus(target)

    if is_terminal(current):
        raise InvalidStateTransitionError(
            f'Appointment {appointment.id} is already {current.value} and cannot be modified.'
        )

    if target not in TRANSITION_ACTORS or not can_transition(current, target):
        raise InvalidStateTransitionError(
            f'Cannot move appointment {appointment.id} from {current.value} to {target.value}.'
        )

    if TRANSITION_ACTORS[target] != actor_role:
        raise UnauthorizedError(f'A {actor_role} cannot move an appointment to {target.value}.')

    appointment.status = target.value
    logger.debug('Appointment %s moved from %s to %s', appointment.id, current.value, target.value)
    return current
