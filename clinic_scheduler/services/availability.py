import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import time

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.models.availability import AvailabilityRule
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER, User
from clinic_scheduler.services.errors import InvalidInputError, NotFoundError
from clinic_scheduler.services.locks import provider_transaction
from clinic_scheduler.services.slots import get_provider_rules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleSpec:
    day_of_week: int
    start_time: time
    end_time: time


def find_provider(db: Session, provider_id: int) -> User:
    provider = db.get(User, provider_id)
    if provider is None or provider.role != ROLE_PROVIDER:
        raise NotFoundError(f'Provider not found with ID: {provider_id}')
    return provider


def find_patient(db: Session, patient_id: int) -> User:
    patient = db.get(User, patient_id)
    if patient is None or patient.role != ROLE_PATIENT:
        raise NotFoundError(f'Patient not found with ID: {patient_id}')
    return patient


def validate_rules(rules: Sequence[RuleSpec], slot_duration_minutes: int) -> None:
    if slot_duration_minutes is None or slot_duration_minutes < config.MIN_SLOT_DURATION_MINUTES:
        raise InvalidInputError(
            f'Slot duration must be at least {config.MIN_SLOT_DURATION_MINUTES} minutes.'
        )

    by_day: dict[int, list[RuleSpec]] = {}
    for rule in rules:
        if not 0 <= rule.day_of_week <= 6:
            raise InvalidInputError(f'Invalid day of week: {rule.day_of_week}.')
        if rule.start_time >= rule.end_time:
            raise InvalidInputError(
                f'Availability start {rule.start_time:%H:%M} must be before end {rule.end_time:%H:%M}.'
            )
        by_day.setdefault(rule.day_of_week, []).append(rule)

    for day_of_week, day_rules in by_day.items():
        ordered = sorted(day_rules, key=lambda rule: rule.start_time)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start_time < previous.end_time:
                raise InvalidInputError(f'Availability rules overlap on day {day_of_week}.')


def set_weekly_availability(
    db: Session,
    provider_id: int,
    rules: Sequence[RuleSpec],
    slot_duration_minutes: int,
) -> int:
    """Replace the provider's whole weekly schedule.

    Returns the number of rules stored. An empty ``rules`` clears the schedule
    but still records the slot duration.
    """
    validate_rules(rules, slot_duration_minutes)

    with provider_transaction(db, provider_id):
        provider = find_provider(db, provider_id)
        provider.slot_duration_minutes = slot_duration_minutes

        db.query(AvailabilityRule).filter(
            AvailabilityRule.provider_id == provider_id,
        ).delete(synchronize_session=False)

        db.add_all(
            AvailabilityRule(
                provider_id=provider_id,
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
            )
            for rule in rules
        )

    logger.info('Set %s availability rules for provider %s', len(rules), provider_id)
    return len(rules)


def get_weekly_availability(db: Session, provider_id: int) -> list[AvailabilityRule]:
    find_provider(db, provider_id)
    return get_provider_rules(db, provider_id)
