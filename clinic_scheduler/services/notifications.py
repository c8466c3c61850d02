"""Notification requests emitted by the scheduling core.

Mutating operations never talk to the notification collaborator directly. They
return :class:`NotificationEvent` records and the request layer hands those to
a :class:`NotificationDispatcher` after the transaction has been committed.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

BOOKING_CONFIRMATION = 'booking_confirmation'
APPOINTMENT_RESCHEDULED = 'appointment_rescheduled'
PATIENT_CANCELLATION = 'patient_cancellation'
PROVIDER_CONFIRMATION = 'provider_confirmation'
PROVIDER_CANCELLATION = 'provider_cancellation'
WAITLIST_PROMOTION = 'waitlist_promotion'
WAITLIST_SLOT_AVAILABLE = 'waitlist_slot_available'
APPOINTMENT_REMINDER = 'appointment_reminder'

NotificationSender = Callable[[str, str, dict[str, Any]], None]


@dataclass(frozen=True)
class NotificationEvent:
    recipient_address: str
    template_kind: str
    context: dict[str, Any] = field(default_factory=dict)


def appointment_context(appointment, **extra: Any) -> dict[str, Any]:
    context: dict[str, Any] = {
        'appointment_id': appointment.id,
        'appointment_datetime': format_datetime(appointment.appointment_datetime),
        'status': appointment.status,
        'patient_name': appointment.patient.full_name if appointment.patient else None,
        'provider_name': appointment.provider.full_name if appointment.provider else None,
        'location': (appointment.provider.location if appointment.provider else None) or 'Main Campus',
    }
    context.update(extra)
    return context


def format_datetime(value: datetime) -> str:
    return value.isoformat(timespec='minutes')


def log_sender(recipient_address: str, template_kind: str, context: dict[str, Any]) -> None:
    logger.info('Notification %s queued for %s: %s', template_kind, recipient_address, context)


class NotificationDispatcher:
    """Best-effort delivery of notification events.

    A failing send is logged and skipped; it never reaches the caller.
    """

    def __init__(self, sender: NotificationSender = log_sender):
        self.sender = sender

    def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        delivered = 0
        for event in events:
            if not event.recipient_address:
                logger.warning('Skipping %s notification without a recipient address', event.template_kind)
                continue
            try:
                self.sender(event.recipient_address, event.template_kind, event.context)
                delivered += 1
            except Exception:
                logger.exception(
                    'Failed to send %s notification to %s',
                    event.template_kind,
                    event.recipient_address,
                )
        return delivered


dispatcher = NotificationDispatcher()
