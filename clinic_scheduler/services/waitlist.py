import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.waitlist import WaitlistEntry
from clinic_scheduler.services import notifications
from clinic_scheduler.services.availability import find_patient, find_provider
from clinic_scheduler.services.booking import create_confirmed_slot, find_active_appointment
from clinic_scheduler.services.errors import InvalidInputError, NotFoundError, UnauthorizedError
from clinic_scheduler.services.locks import provider_transaction
from clinic_scheduler.services.notifications import NotificationEvent

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    appointment: Appointment | None = None
    notifications: list[NotificationEvent] = field(default_factory=list)


def join_waitlist(
    db: Session,
    patient_id: int,
    provider_id: int,
    preferred_date: date,
    now: datetime | None = None,
) -> WaitlistEntry:
    now = now or datetime.now()
    find_patient(db, patient_id)
    find_provider(db, provider_id)

    if preferred_date < now.date():
        raise InvalidInputError('Cannot join the waitlist for a date in the past.')

    with provider_transaction(db, provider_id):
        entry = WaitlistEntry(
            patient_id=patient_id,
            provider_id=provider_id,
            preferred_date=preferred_date,
            created_at=now,
        )
        db.add(entry)
        db.flush()

    db.refresh(entry)
    logger.info('Patient %s joined the waitlist of provider %s for %s', patient_id, provider_id, preferred_date)
    return entry


def waitlist_query(db: Session, provider_id: int, preferred_date: date):
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.provider_id == provider_id,
        WaitlistEntry.preferred_date == preferred_date,
    ).order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())


def get_waitlist(db: Session, provider_id: int, preferred_date: date) -> list[WaitlistEntry]:
    find_provider(db, provider_id)
    return waitlist_query(db, provider_id, preferred_date).all()


def promote_from_waitlist(db: Session, cancelled_appointment: Appointment) -> PromotionResult:
    """Book the oldest waitlisted patient into the slot just freed.

    Must run inside the same ``provider_transaction`` as the cancellation. The
    freed date-time is reused as is; only slot occupancy is re-verified.
    """
    provider_id = cancelled_appointment.provider_id
    freed_slot = cancelled_appointment.appointment_datetime

    entry = waitlist_query(db, provider_id, freed_slot.date()).first()
    if entry is None:
        logger.info('No waitlist entries for provider %s on %s', provider_id, freed_slot.date())
        return PromotionResult()

    if find_active_appointment(db, provider_id, freed_slot) is not None:
        logger.warning('Freed slot %s of provider %s was taken before promotion', freed_slot, provider_id)
        return PromotionResult()

    promoted = create_confirmed_slot(db, entry.patient_id, provider_id, freed_slot)
    patient_email = entry.patient.email if entry.patient else None
    db.delete(entry)
    db.flush()
    logger.info('Promoted patient %s from the waitlist into appointment %s', promoted.patient_id, promoted.id)

    events = []
    if patient_email:
        events.append(
            NotificationEvent(
                recipient_address=patient_email,
                template_kind=notifications.WAITLIST_PROMOTION,
                context={
                    'appointment_id': promoted.id,
                    'appointment_datetime': notifications.format_datetime(freed_slot),
                    'provider_name': cancelled_appointment.provider.full_name,
                },
            )
        )
    return PromotionResult(appointment=promoted, notifications=events)


def notify_waitlisted_patient(db: Session, waitlist_id: int, provider_id: int) -> NotificationEvent:
    """Provider-driven offer to a waitlisted patient; the entry is fulfilled."""
    logger.info('Provider %s notifying waitlisted patient from entry %s', provider_id, waitlist_id)

    with provider_transaction(db, provider_id):
        entry = db.get(WaitlistEntry, waitlist_id)
        if entry is None:
            raise NotFoundError(f'Waitlist entry not found with ID: {waitlist_id}')
        if entry.provider_id != provider_id:
            raise UnauthorizedError('Provider is not authorized to manage this waitlist entry.')

        event = NotificationEvent(
            recipient_address=entry.patient.email,
            template_kind=notifications.WAITLIST_SLOT_AVAILABLE,
            context={
                'patient_name': entry.patient.full_name,
                'provider_name': entry.provider.full_name,
                'preferred_date': entry.preferred_date.isoformat(),
            },
        )
        db.delete(entry)

    logger.info('Removed waitlist entry %s of provider %s', waitlist_id, provider_id)
    return event
