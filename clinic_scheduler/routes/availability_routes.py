from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_provider
from clinic_scheduler.core import config
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User
from clinic_scheduler.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from clinic_scheduler.services import availability as availability_service
from clinic_scheduler.services.errors import SchedulingError
from clinic_scheduler.services.slots import get_provider_slots

router = APIRouter(tags=['availability'])

DAY_NAMES = ['MONDAY', 'TUESDAY', 'WEDNESDAY', 'THURSDAY', 'FRIDAY', 'SATURDAY', 'SUNDAY']
MAX_PROJECTION_DAYS = 28


class AvailabilityRuleRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator('day_of_week', mode='before')
    @classmethod
    def parse_day_of_week(cls, value):
        if isinstance(value, str) and not value.strip().isdigit():
            normalized = value.strip().upper()
            if normalized not in DAY_NAMES:
                raise ValueError('Invalid day of week.')
            return DAY_NAMES.index(normalized)
        return value

    @model_validator(mode='after')
    def validate_interval(self) -> 'AvailabilityRuleRequest':
        if not 0 <= self.day_of_week <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class WeeklyAvailabilityRequest(BaseModel):
    availability: list[AvailabilityRuleRequest] = Field(default_factory=list)
    slot_duration_minutes: int = Field(ge=config.MIN_SLOT_DURATION_MINUTES)


class AvailabilityRuleResponse(BaseModel):
    id: int
    day_of_week: int
    day_name: str
    start_time: time
    end_time: time


class SetAvailabilityResponse(BaseModel):
    provider_id: int
    provider_name: str | None = None
    message: str
    rules_created: int


class TimeSlotResponse(BaseModel):
    start_time: time
    end_time: time
    status: str


class DailySlotsResponse(BaseModel):
    date: date
    slots: list[TimeSlotResponse]


@router.put('/{provider_id}/availability', response_model=SetAvailabilityResponse)
def set_weekly_availability(
    provider_id: int,
    data: WeeklyAvailabilityRequest,
    current_provider: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    if current_provider.id != provider_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Providers can only change their own availability.',
        )

    ensure_database_ready()

    rules = [
        availability_service.RuleSpec(rule.day_of_week, rule.start_time, rule.end_time)
        for rule in data.availability
    ]
    try:
        created = availability_service.set_weekly_availability(db, provider_id, rules, data.slot_duration_minutes)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    message = (
        f'Availability successfully set for {current_provider.full_name or current_provider.email}.'
        if created
        else 'All availability slots have been cleared.'
    )
    return SetAvailabilityResponse(
        provider_id=provider_id,
        provider_name=current_provider.full_name,
        message=message,
        rules_created=created,
    )


@router.get('/{provider_id}/availability', response_model=list[AvailabilityRuleResponse])
def get_weekly_availability(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        rules = availability_service.get_weekly_availability(db, provider_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        AvailabilityRuleResponse(
            id=rule.id,
            day_of_week=rule.day_of_week,
            day_name=DAY_NAMES[rule.day_of_week],
            start_time=rule.start_time,
            end_time=rule.end_time,
        )
        for rule in rules
    ]


@router.get('/{provider_id}/slots', response_model=list[DailySlotsResponse])
def list_provider_slots(
    provider_id: int,
    days: int = Query(default=config.SLOT_PROJECTION_DAYS, ge=1, le=MAX_PROJECTION_DAYS),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        provider = availability_service.find_provider(db, provider_id)
        projection = get_provider_slots(db, provider, days=days)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        DailySlotsResponse(
            date=slot_date,
            slots=[
                TimeSlotResponse(start_time=slot.start_time, end_time=slot.end_time, status=slot.status.value)
                for slot in slots
            ],
        )
        for slot_date, slots in projection.items()
    ]
