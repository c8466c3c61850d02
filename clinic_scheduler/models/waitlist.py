"""Waitlist model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import relationship
from clinic_scheduler.database import Base


class WaitlistEntry(Base):
    """A patient's request to be booked if a slot opens on a given date."""
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index('idx_waitlist_provider_date', 'provider_id', 'preferred_date', 'created_at'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    preferred_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    patient = relationship("User", foreign_keys=[patient_id])
    provider = relationship("User", foreign_keys=[provider_id])
