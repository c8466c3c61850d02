from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_provider
from clinic_scheduler.database import get_db
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.models.user import ROLE_PROVIDER, User
from clinic_scheduler.routes.common import (
    AppointmentResponse,
    database_unavailable,
    ensure_database_ready,
    schedule_notifications,
    to_http_exception,
)
from clinic_scheduler.services import appointments as appointment_queries
from clinic_scheduler.services import booking, cancellation
from clinic_scheduler.services.errors import SchedulingError

router = APIRouter(tags=['providers'])

MAX_NOTE_FIELD_LENGTH = 2000


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class RescheduleRequest(BaseModel):
    new_datetime: datetime


class ConsultationNoteRequest(BaseModel):
    diagnosis: str | None = None
    prescription: str | None = None
    treatment_details: str | None = None
    remarks: str | None = None

    @field_validator('diagnosis', 'prescription', 'treatment_details', 'remarks')
    @classmethod
    def validate_note_field(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_NOTE_FIELD_LENGTH:
            raise ValueError(f'Note fields must be {MAX_NOTE_FIELD_LENGTH} characters or fewer.')

        return normalized


class StatusUpdateResponse(BaseModel):
    appointment: AppointmentResponse
    previous_status: str
    message: str
    promoted_appointment_id: int | None = None
    timestamp: datetime


class ConsultationNoteResponse(BaseModel):
    id: int
    appointment_id: int
    diagnosis: str | None = None
    prescription: str | None = None
    treatment_details: str | None = None
    remarks: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentHistoryResponse(BaseModel):
    appointment: AppointmentResponse
    consultation_note: ConsultationNoteResponse | None = None


@router.put('/appointments/{appointment_id}/status', response_model=StatusUpdateResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = cancellation.update_status(db, current_provider.id, appointment_id, data.status)
        response = StatusUpdateResponse(
            appointment=AppointmentResponse.from_appointment(result.appointment),
            previous_status=result.previous_status.value,
            message=result.message,
            promoted_appointment_id=result.promoted_appointment.id if result.promoted_appointment else None,
            timestamp=datetime.now(),
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, result.notifications)
    return response


@router.put('/appointments/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = booking.reschedule(db, appointment_id, current_provider.id, ROLE_PROVIDER, data.new_datetime)
        response = AppointmentResponse.from_appointment(result.appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, result.notifications)
    return response


@router.get('/appointments/upcoming', response_model=list[AppointmentResponse])
def list_upcoming_appointments(
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = appointment_queries.get_upcoming_appointments_for_provider(db, current_provider.id)
        return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/history', response_model=list[AppointmentHistoryResponse])
def list_appointment_history(
    patient_id: int | None = Query(default=None),
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = appointment_queries.get_appointment_history(db, current_provider.id, patient_id)
        return [
            AppointmentHistoryResponse(
                appointment=AppointmentResponse.from_appointment(appointment),
                consultation_note=(
                    ConsultationNoteResponse.model_validate(appointment.consultation_note)
                    if appointment.consultation_note
                    else None
                ),
            )
            for appointment in appointments
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/appointments/{appointment_id}/note',
    response_model=ConsultationNoteResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_consultation_note(
    appointment_id: int,
    data: ConsultationNoteRequest,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return appointment_queries.add_consultation_note(
            db,
            current_provider.id,
            appointment_id,
            diagnosis=data.diagnosis,
            prescription=data.prescription,
            treatment_details=data.treatment_details,
            remarks=data.remarks,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
