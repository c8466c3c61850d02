"""Availability model definitions."""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Time
from clinic_scheduler.database import Base


class AvailabilityRule(Base):
    """One recurring weekly open-hours interval of a provider."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint('start_time < end_time', name='ck_availability_rules_start_before_end'),
        CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_rules_day_of_week'),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday, matches date.weekday()
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
