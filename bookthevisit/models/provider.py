"""Provider (tenant) model definitions."""

from sqlalchemy import Boolean, Column, Date, Integer, String

from bookthevisit.core import config
from bookthevisit.database import Base


class Provider(Base):
    """A solo provider and the settings that shape their booking page."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    subdomain = Column(String, unique=True, index=True)
    office_name = Column(String)
    email = Column(String)
    phone = Column(String)
    timezone = Column(String, default=config.DEFAULT_TIMEZONE, nullable=False)
    every_other_saturday = Column(Boolean, default=False, nullable=False)
    saturday_start_date = Column(Date)
    send_reminders = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
