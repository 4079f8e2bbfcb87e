"""Email template model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String, Text

from bookthevisit.database import Base


class EmailTemplate(Base):
    """A provider's customised subject/body for one email type."""
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True, nullable=False)
    template_type = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
