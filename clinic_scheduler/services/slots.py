"""Projection of recurring availability rules into concrete time slots."""

import enum
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.models.appointment import ACTIVE_STATUSES, Appointment
from clinic_scheduler.models.availability import AvailabilityRule
from clinic_scheduler.models.user import User


class SlotStatus(str, enum.Enum):
    AVAILABLE = 'AVAILABLE'
    BOOKED = 'BOOKED'


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time
    status: SlotStatus


def iterate_rule_slot_starts(rule_start: time, rule_end: time, slot_duration_minutes: int) -> Iterator[time]:
    """Yield slot starts of one rule; a slot overflowing the rule end is dropped."""
    anchor = date.min
    current = datetime.combine(anchor, rule_start)
    boundary = datetime.combine(anchor, rule_end)
    step = timedelta(minutes=slot_duration_minutes)

    while current + step <= boundary:
        yield current.time()
        current += step


def rules_for_day(rules: Iterable[AvailabilityRule], day: date) -> list[AvailabilityRule]:
    weekday = day.weekday()
    return sorted(
        (rule for rule in rules if rule.day_of_week == weekday),
        key=lambda rule: rule.start_time,
    )


def generate_daily_slots(
    day: date,
    rules: Sequence[AvailabilityRule],
    slot_duration_minutes: int,
    booked_starts: set[datetime],
    now: datetime,
) -> list[Slot]:
    slots: list[Slot] = []
    step = timedelta(minutes=slot_duration_minutes)

    for rule in rules_for_day(rules, day):
        for slot_start in iterate_rule_slot_starts(rule.start_time, rule.end_time, slot_duration_minutes):
            start_at = datetime.combine(day, slot_start)
            if day == now.date() and start_at <= now:
                continue
            slots.append(
                Slot(
                    start_time=slot_start,
                    end_time=(start_at + step).time(),
                    status=SlotStatus.BOOKED if start_at in booked_starts else SlotStatus.AVAILABLE,
                )
            )

    return slots


def project_slots(
    rules: Sequence[AvailabilityRule],
    slot_duration_minutes: int | None,
    booked_starts: Iterable[datetime],
    start_date: date,
    days: int,
    now: datetime,
) -> dict[date, list[Slot]]:
    """Project ``rules`` over ``days`` dates beginning at ``start_date``.

    ``booked_starts`` holds the start of every non-cancelled appointment of the
    provider. A provider without rules or without a slot duration has not been
    configured yet and projects to an empty mapping. Dates without slots are
    left out.
    """
    if not rules or not slot_duration_minutes:
        return {}

    normalized_booked = {start.replace(second=0, microsecond=0) for start in booked_starts}
    projection: dict[date, list[Slot]] = {}

    for offset in range(days):
        day = start_date + timedelta(days=offset)
        daily_slots = generate_daily_slots(day, rules, slot_duration_minutes, normalized_booked, now)
        if daily_slots:
            projection[day] = daily_slots

    return projection


def is_projected_slot_start(
    rules: Sequence[AvailabilityRule],
    slot_duration_minutes: int | None,
    requested: datetime,
) -> bool:
    """Whether ``requested`` is the start of a slot the rules would project."""
    if not rules or not slot_duration_minutes:
        return False
    if requested.second or requested.microsecond:
        return False

    requested_time = requested.time()
    for rule in rules_for_day(rules, requested.date()):
        if not rule.start_time <= requested_time < rule.end_time:
            continue
        if requested_time in set(iterate_rule_slot_starts(rule.start_time, rule.end_time, slot_duration_minutes)):
            return True
    return False


def get_booked_slot_starts(db: Session, provider_id: int, range_start: datetime, range_end: datetime) -> set[datetime]:
    appointments = db.query(Appointment.appointment_datetime).filter(
        Appointment.provider_id == provider_id,
        Appointment.status.in_([status.value for status in ACTIVE_STATUSES]),
        Appointment.appointment_datetime >= range_start,
        Appointment.appointment_datetime < range_end,
    ).all()
    return {appointment_datetime for (appointment_datetime,) in appointments}


def get_provider_rules(db: Session, provider_id: int) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.provider_id == provider_id,
    ).order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


def get_provider_slots(
    db: Session,
    provider: User,
    days: int | None = None,
    now: datetime | None = None,
) -> dict[date, list[Slot]]:
    now = now or datetime.now()
    days = days or config.SLOT_PROJECTION_DAYS
    start_date = now.date()
    range_start = datetime.combine(start_date, time.min)
    range_end = range_start + timedelta(days=days)

    rules = get_provider_rules(db, provider.id)
    booked_starts = get_booked_slot_starts(db, provider.id, range_start, range_end)

    return project_slots(rules, provider.slot_duration_minutes, booked_starts, start_date, days, now)
