"""Service model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from bookthevisit.database import Base

PATIENT_TYPES = ("new", "established")


class Service(Base):
    """A bookable visit type; its duration sets the appointment length."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    default_for = Column(String)  # new/established
