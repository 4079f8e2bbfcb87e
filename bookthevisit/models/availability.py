"""Weekly hours and override model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Time

from bookthevisit.core import config
from bookthevisit.database import Base


class WeeklyAvailabilityRule(Base):
    """Recurring open hours for one day of the week, in provider-local time."""
    __tablename__ = "availability"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)  # Sunday=0
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_interval = Column(Integer, default=config.DEFAULT_SLOT_INTERVAL_MINUTES, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class AvailabilityOverride(Base):
    """A window that opens time otherwise closed by hours or time off."""
    __tablename__ = "availability_overrides"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
