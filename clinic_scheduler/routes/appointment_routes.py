from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_patient, get_current_provider
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import ROLE_PATIENT, User
from clinic_scheduler.routes.common import (
    AppointmentResponse,
    MessageResponse,
    database_unavailable,
    ensure_database_ready,
    schedule_notifications,
    to_http_exception,
)
from clinic_scheduler.services import appointments as appointment_queries
from clinic_scheduler.services import booking, cancellation
from clinic_scheduler.services.errors import SchedulingError

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    appointment_datetime: datetime


class RescheduleRequest(BaseModel):
    new_datetime: datetime


class CancellationResponse(BaseModel):
    success: bool
    message: str
    appointment: AppointmentResponse
    promoted_appointment_id: int | None = None


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = booking.book_appointment(db, current_patient.id, data.provider_id, data.appointment_datetime)
        response = AppointmentResponse.from_appointment(result.appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, result.notifications)
    return response


@router.put('/{appointment_id}/cancel', response_model=CancellationResponse)
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = cancellation.cancel(db, appointment_id, current_patient.id)
        response = CancellationResponse(
            success=True,
            message=result.message,
            appointment=AppointmentResponse.from_appointment(result.appointment),
            promoted_appointment_id=result.promoted_appointment.id if result.promoted_appointment else None,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, result.notifications)
    return response


@router.put('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = booking.reschedule(db, appointment_id, current_patient.id, ROLE_PATIENT, data.new_datetime)
        response = AppointmentResponse.from_appointment(result.appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, result.notifications)
    return response


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = appointment_queries.get_appointments_for_patient(db, current_patient.id)
        return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/upcoming', response_model=list[AppointmentResponse])
def list_my_upcoming_appointments(
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = appointment_queries.get_upcoming_appointments_for_patient(db, current_patient.id)
        return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/send-reminders', response_model=MessageResponse)
def send_appointment_reminders(
    background_tasks: BackgroundTasks,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        events = appointment_queries.collect_appointment_reminders(db, current_provider.id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, events)
    return MessageResponse(success=True, message=f'Queued {len(events)} appointment reminders.')


@router.post('/{appointment_id}/send-reminder', response_model=MessageResponse)
def send_single_appointment_reminder(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        event = appointment_queries.send_appointment_reminder(db, current_provider.id, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, [event])
    return MessageResponse(success=True, message='Reminder queued.')
