"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from bookthevisit.database import Base

BOOKED = "booked"
CANCELLED = "cancelled"
COMPLETED = "completed"
APPOINTMENT_STATUSES = (BOOKED, CANCELLED, COMPLETED)


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    service_id = Column(Integer, ForeignKey("services.id"))
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, default=BOOKED, nullable=False)
    manage_token = Column(String, unique=True)
    patient_note = Column(String)
    reminder_24h_sent_at = Column(DateTime(timezone=True))
    reminder_2h_sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
