"""User model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_scheduler.database import Base

ROLE_PATIENT = 'patient'
ROLE_PROVIDER = 'provider'


class User(Base):
    """Represents a patient or a provider resolved by the identity service."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # patient/provider
    slot_duration_minutes = Column(Integer, nullable=True)  # providers only
    specialization = Column(String, nullable=True)
    location = Column(String, nullable=True)

    @property
    def is_provider(self) -> bool:
        return self.role == ROLE_PROVIDER

    @property
    def is_patient(self) -> bool:
        return self.role == ROLE_PATIENT
