"""Patient model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from bookthevisit.database import Base


class Patient(Base):
    """Represents a provider's patient."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, index=True)
    cell_phone = Column(String)
    allow_email = Column(Boolean, default=True, nullable=False)
    allow_text = Column(Boolean, default=True, nullable=False)
    last_seen_at = Column(DateTime(timezone=True))
