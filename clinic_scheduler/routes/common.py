from collections.abc import Iterable
from datetime import datetime

from fastapi import BackgroundTasks, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.database import ensure_scheduling_schema
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.services.errors import (
    DuplicateBookingError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
    OutsideAvailabilityError,
    SchedulingError,
    SlotConflictError,
    UnauthorizedError,
)
from clinic_scheduler.services.notifications import NotificationEvent, dispatcher

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES: list[tuple[type[SchedulingError], int]] = [
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (OutsideAvailabilityError, status.HTTP_400_BAD_REQUEST),
    (SlotConflictError, status.HTTP_409_CONFLICT),
    (DuplicateBookingError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
]


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str | None = None
    provider_id: int
    provider_name: str | None = None
    appointment_datetime: datetime
    status: str
    created_at: datetime | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'AppointmentResponse':
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            patient_name=appointment.patient.full_name if appointment.patient else None,
            provider_id=appointment.provider_id,
            provider_name=appointment.provider.full_name if appointment.provider else None,
            appointment_datetime=appointment.appointment_datetime,
            status=appointment.status,
            created_at=appointment.created_at,
        )


class MessageResponse(BaseModel):
    success: bool
    message: str


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail: str | dict = exc.message
    if isinstance(exc, SlotConflictError):
        detail = {'message': exc.message, 'waitlist_available': exc.waitlist_available}
    return HTTPException(status_code=status_code, detail=detail)


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def schedule_notifications(background_tasks: BackgroundTasks, events: Iterable[NotificationEvent]) -> None:
    events = list(events)
    if events:
        background_tasks.add_task(dispatcher.dispatch, events)
