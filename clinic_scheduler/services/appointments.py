import logging
from datetime import datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.models.appointment import Appointment, AppointmentStatus, UPCOMING_STATUSES
from clinic_scheduler.models.consultation_note import ConsultationNote
from clinic_scheduler.services import notifications
from clinic_scheduler.services.availability import find_patient, find_provider
from clinic_scheduler.services.errors import InvalidInputError, InvalidStateTransitionError, NotFoundError
from clinic_scheduler.services.notifications import NotificationEvent

logger = logging.getLogger(__name__)


def get_appointments_for_patient(db: Session, patient_id: int) -> list[Appointment]:
    find_patient(db, patient_id)
    return db.query(Appointment).filter(
        Appointment.patient_id == patient_id,
    ).order_by(Appointment.appointment_datetime.desc()).all()


def _upcoming_query(db: Session, now: datetime):
    return db.query(Appointment).filter(
        Appointment.status.in_([status.value for status in UPCOMING_STATUSES]),
        Appointment.appointment_datetime >= now,
        Appointment.appointment_datetime <= now + timedelta(days=config.UPCOMING_WINDOW_DAYS),
    )


def get_upcoming_appointments_for_patient(db: Session, patient_id: int, now: datetime | None = None) -> list[Appointment]:
    now = now or datetime.now()
    find_patient(db, patient_id)
    return _upcoming_query(db, now).filter(
        Appointment.patient_id == patient_id,
    ).order_by(Appointment.appointment_datetime.asc()).all()


def get_upcoming_appointments_for_provider(db: Session, provider_id: int, now: datetime | None = None) -> list[Appointment]:
    now = now or datetime.now()
    find_provider(db, provider_id)
    return _upcoming_query(db, now).filter(
        Appointment.provider_id == provider_id,
    ).order_by(Appointment.appointment_datetime.asc()).all()


def get_appointment_history(db: Session, provider_id: int, patient_id: int | None = None) -> list[Appointment]:
    find_provider(db, provider_id)
    query = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.status == AppointmentStatus.COMPLETED.value,
    )
    if patient_id is not None:
        find_patient(db, patient_id)
        query = query.filter(Appointment.patient_id == patient_id)
    return query.order_by(Appointment.appointment_datetime.desc()).all()


def add_consultation_note(
    db: Session,
    provider_id: int,
    appointment_id: int,
    diagnosis: str | None = None,
    prescription: str | None = None,
    treatment_details: str | None = None,
    remarks: str | None = None,
) -> ConsultationNote:
    logger.info('Provider %s adding consultation note for appointment %s', provider_id, appointment_id)
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.provider_id == provider_id,
    ).first()
    if appointment is None:
        raise NotFoundError(f'Appointment not found with ID: {appointment_id} for this provider.')
    if appointment.current_status != AppointmentStatus.COMPLETED:
        raise InvalidStateTransitionError('Consultation notes can only be added to completed appointments.')
    if appointment.consultation_note is not None:
        raise InvalidInputError('A consultation note already exists for this appointment.')

    note = ConsultationNote(
        appointment_id=appointment.id,
        diagnosis=diagnosis,
        prescription=prescription,
        treatment_details=treatment_details,
        remarks=remarks,
    )
    db.add(note)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidInputError('A consultation note already exists for this appointment.') from exc
    db.refresh(note)
    logger.info('Consultation note saved for appointment %s', appointment_id)
    return note


def _reminder_event(appointment: Appointment) -> NotificationEvent:
    return NotificationEvent(
        recipient_address=appointment.patient.email,
        template_kind=notifications.APPOINTMENT_REMINDER,
        context=notifications.appointment_context(
            appointment,
            date=appointment.appointment_datetime.date().isoformat(),
            time=appointment.appointment_datetime.strftime('%H:%M'),
        ),
    )


def collect_appointment_reminders(
    db: Session,
    provider_id: int,
    now: datetime | None = None,
) -> list[NotificationEvent]:
    """Reminder events for the provider's SCHEDULED appointments of the next calendar day."""
    now = now or datetime.now()
    find_provider(db, provider_id)
    tomorrow_start = datetime.combine(now.date() + timedelta(days=1), time.min)
    tomorrow_end = tomorrow_start + timedelta(days=1)

    appointments = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
        Appointment.appointment_datetime >= tomorrow_start,
        Appointment.appointment_datetime < tomorrow_end,
    ).order_by(Appointment.appointment_datetime.asc()).all()

    logger.info('Found %s appointments of provider %s on %s requiring reminders',
                len(appointments), provider_id, tomorrow_start.date())
    return [_reminder_event(appointment) for appointment in appointments]


def send_appointment_reminder(db: Session, provider_id: int, appointment_id: int) -> NotificationEvent:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None or appointment.provider_id != provider_id:
        raise NotFoundError(f'Appointment not found with ID: {appointment_id} for this provider.')
    if appointment.current_status != AppointmentStatus.SCHEDULED:
        logger.warning('Cannot send reminder for appointment %s in state %s', appointment_id, appointment.status)
        raise InvalidStateTransitionError("Reminder can only be sent for 'SCHEDULED' appointments.")
    return _reminder_event(appointment)

