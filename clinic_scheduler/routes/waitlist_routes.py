from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_patient, get_current_provider
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User
from clinic_scheduler.models.waitlist import WaitlistEntry
from clinic_scheduler.routes.common import (
    MessageResponse,
    database_unavailable,
    ensure_database_ready,
    schedule_notifications,
    to_http_exception,
)
from clinic_scheduler.services import waitlist as waitlist_service
from clinic_scheduler.services.errors import SchedulingError

router = APIRouter(tags=['waitlist'])


class JoinWaitlistRequest(BaseModel):
    preferred_date: date


class WaitlistEntryResponse(BaseModel):
    waitlist_id: int
    patient_id: int
    patient_name: str | None = None
    provider_id: int
    preferred_date: date
    requested_at: datetime

    @classmethod
    def from_entry(cls, entry: WaitlistEntry) -> 'WaitlistEntryResponse':
        return cls(
            waitlist_id=entry.id,
            patient_id=entry.patient_id,
            patient_name=entry.patient.full_name if entry.patient else None,
            provider_id=entry.provider_id,
            preferred_date=entry.preferred_date,
            requested_at=entry.created_at,
        )


@router.post(
    '/providers/{provider_id}/waitlist',
    response_model=WaitlistEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def join_waitlist(
    provider_id: int,
    data: JoinWaitlistRequest,
    current_patient: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        entry = waitlist_service.join_waitlist(db, current_patient.id, provider_id, data.preferred_date)
        return WaitlistEntryResponse.from_entry(entry)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/waitlist', response_model=list[WaitlistEntryResponse])
def list_waitlist(
    provider_id: int,
    preferred_date: date = Query(..., alias='date'),
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    if current_provider.id != provider_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Providers can only view their own waitlist.',
        )

    ensure_database_ready()

    try:
        entries = waitlist_service.get_waitlist(db, provider_id, preferred_date)
        return [WaitlistEntryResponse.from_entry(entry) for entry in entries]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/waitlist/{waitlist_id}/notify', response_model=MessageResponse)
def notify_waitlisted_patient(
    waitlist_id: int,
    background_tasks: BackgroundTasks,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        event = waitlist_service.notify_waitlisted_patient(db, waitlist_id, current_provider.id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    schedule_notifications(background_tasks, [event])
    return MessageResponse(success=True, message='Patient has been notified and removed from the waitlist.')
