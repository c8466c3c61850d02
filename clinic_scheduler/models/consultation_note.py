"""Consultation note model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from clinic_scheduler.database import Base


class ConsultationNote(Base):
    """Clinical note written by the provider after a completed appointment."""
    __tablename__ = "consultation_notes"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    diagnosis = Column(String)
    prescription = Column(String)
    treatment_details = Column(String)
    remarks = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    appointment = relationship("Appointment", back_populates="consultation_note")
