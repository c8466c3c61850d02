from datetime import time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic_scheduler.routes import availability_routes
from clinic_scheduler.routes.availability_routes import (
    AvailabilityRuleRequest,
    WeeklyAvailabilityRequest,
    get_weekly_availability,
    list_provider_slots,
    set_weekly_availability,
)
from clinic_scheduler.routes.common import to_http_exception
from clinic_scheduler.services.errors import (
    DuplicateBookingError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
    OutsideAvailabilityError,
    SlotConflictError,
    UnauthorizedError,
)


@pytest.fixture(autouse=True)
def skip_schema_bootstrap(monkeypatch) -> None:
    monkeypatch.setattr(availability_routes, 'ensure_database_ready', lambda: None)


def weekday_morning_request() -> WeeklyAvailabilityRequest:
    return WeeklyAvailabilityRequest(
        availability=[
            {'day_of_week': 'MONDAY', 'start_time': '09:00', 'end_time': '12:00'},
            {'day_of_week': 2, 'start_time': '13:00', 'end_time': '15:00'},
        ],
        slot_duration_minutes=30,
    )


@pytest.mark.parametrize(('day', 'expected'), [('monday', 0), (' Sunday ', 6), (3, 3), ('4', 4)])
def test_availability_rule_request_accepts_day_names_and_numbers(day, expected: int) -> None:
    rule = AvailabilityRuleRequest(day_of_week=day, start_time=time(9, 0), end_time=time(10, 0))

    assert rule.day_of_week == expected


@pytest.mark.parametrize(
    ('day', 'start', 'end'),
    [
        ('FUNDAY', time(9, 0), time(10, 0)),
        (7, time(9, 0), time(10, 0)),
        (0, time(10, 0), time(9, 0)),
        (0, time(9, 0), time(9, 0)),
    ],
)
def test_availability_rule_request_rejects_invalid_rules(day, start: time, end: time) -> None:
    with pytest.raises(ValidationError):
        AvailabilityRuleRequest(day_of_week=day, start_time=start, end_time=end)


def test_weekly_availability_request_enforces_minimum_slot_duration() -> None:
    with pytest.raises(ValidationError):
        WeeklyAvailabilityRequest(availability=[], slot_duration_minutes=5)


def test_set_weekly_availability_for_other_provider_is_forbidden(db, provider, other_provider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_weekly_availability(other_provider.id, weekday_morning_request(), current_provider=provider, db=db)

    assert exception_info.value.status_code == 403


def test_set_weekly_availability_then_read_back(db, provider) -> None:
    response = set_weekly_availability(provider.id, weekday_morning_request(), current_provider=provider, db=db)

    assert response.rules_created == 2
    assert response.message == 'Availability successfully set for Dr. Meredith Grey.'

    rules = get_weekly_availability(provider.id, db=db)
    assert [(rule.day_name, rule.start_time, rule.end_time) for rule in rules] == [
        ('MONDAY', time(9, 0), time(12, 0)),
        ('WEDNESDAY', time(13, 0), time(15, 0)),
    ]


def test_clearing_availability_reports_cleared(db, provider) -> None:
    set_weekly_availability(provider.id, weekday_morning_request(), current_provider=provider, db=db)

    response = set_weekly_availability(
        provider.id,
        WeeklyAvailabilityRequest(availability=[], slot_duration_minutes=30),
        current_provider=provider,
        db=db,
    )

    assert response.rules_created == 0
    assert response.message == 'All availability slots have been cleared.'
    assert get_weekly_availability(provider.id, db=db) == []


def test_overlapping_rules_return_400(db, provider) -> None:
    request = WeeklyAvailabilityRequest(
        availability=[
            {'day_of_week': 0, 'start_time': '09:00', 'end_time': '12:00'},
            {'day_of_week': 0, 'start_time': '11:00', 'end_time': '13:00'},
        ],
        slot_duration_minutes=30,
    )

    with pytest.raises(HTTPException) as exception_info:
        set_weekly_availability(provider.id, request, current_provider=provider, db=db)

    assert exception_info.value.status_code == 400


def test_list_provider_slots_projects_configured_days(db, monday_schedule) -> None:
    response = list_provider_slots(monday_schedule.id, days=14, db=db)

    assert response
    assert all(day.date.weekday() == 0 for day in response)
    assert [slot.status for slot in response[-1].slots] == ['AVAILABLE'] * 6


def test_list_provider_slots_for_unknown_provider_returns_404(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_provider_slots(patient.id, days=7, db=db)

    assert exception_info.value.status_code == 404


@pytest.mark.parametrize(
    ('error', 'status_code'),
    [
        (InvalidInputError('bad'), 400),
        (OutsideAvailabilityError('closed'), 400),
        (SlotConflictError('taken'), 409),
        (DuplicateBookingError('again'), 409),
        (InvalidStateTransitionError('nope'), 409),
        (NotFoundError('missing'), 404),
        (UnauthorizedError('not yours'), 403),
    ],
)
def test_to_http_exception_maps_error_kinds(error, status_code: int) -> None:
    assert to_http_exception(error).status_code == status_code


def test_slot_conflict_detail_offers_waitlist() -> None:
    assert to_http_exception(SlotConflictError('taken')).detail == {'message': 'taken', 'waitlist_available': True}
