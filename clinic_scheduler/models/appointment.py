"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from clinic_scheduler.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = 'SCHEDULED'
    CONFIRMED_BY_PROVIDER = 'CONFIRMED_BY_PROVIDER'
    COMPLETED = 'COMPLETED'
    CANCELLED_BY_PATIENT = 'CANCELLED_BY_PATIENT'
    CANCELLED_BY_PROVIDER = 'CANCELLED_BY_PROVIDER'
    NO_SHOW = 'NO_SHOW'


CANCELLED_STATUSES = frozenset({
    AppointmentStatus.CANCELLED_BY_PATIENT,
    AppointmentStatus.CANCELLED_BY_PROVIDER,
})
ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - CANCELLED_STATUSES)
UPCOMING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED_BY_PROVIDER,
})

_ACTIVE_SLOT_PREDICATE = text("status NOT IN ('CANCELLED_BY_PATIENT', 'CANCELLED_BY_PROVIDER')")


class Appointment(Base):
    """Represents a booked appointment of a patient with a provider."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            'uq_appointments_active_slot',
            'provider_id',
            'appointment_datetime',
            unique=True,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index('idx_appointments_patient_datetime', 'patient_id', 'appointment_datetime'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_datetime = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    created_at = Column(DateTime, default=datetime.now)

    patient = relationship("User", foreign_keys=[patient_id])
    provider = relationship("User", foreign_keys=[provider_id])
    consultation_note = relationship("ConsultationNote", back_populates="appointment", uselist=False)

    @property
    def current_status(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)


from clinic_scheduler.models import consultation_note  # noqa: E402,F401
