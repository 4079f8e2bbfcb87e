"""Closure model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String

from bookthevisit.database import Base

EVERY_OTHER_SATURDAY_REASON = "every_other_saturday"
HOLIDAY_REASON_PREFIX = "holiday:"


class TimeOffEntry(Base):
    """A closed day (all_day + off_date) or a closed instant range."""
    __tablename__ = "time_off"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    reason = Column(String)
    all_day = Column(Boolean, default=False, nullable=False)
    off_date = Column(Date)
    start_time = Column(DateTime(timezone=True))
    end_time = Column(DateTime(timezone=True))


class ProviderHoliday(Base):
    """A holiday the provider closes for every year."""
    __tablename__ = "provider_holidays"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    holiday_key = Column(String, nullable=False)
