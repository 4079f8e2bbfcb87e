from dataclasses import dataclass, replace
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.orm import Session

from bookthevisit.core.errors import ValidationError
from bookthevisit.models.patient import Patient


@dataclass(frozen=True)
class PatientDetails:
    first_name: str
    last_name: str
    email: str
    cell_phone: str | None = None
    allow_email: bool = True
    allow_text: bool = True

    def normalized(self) -> 'PatientDetails':
        first_name = (self.first_name or '').strip()
        last_name = (self.last_name or '').strip()
        email = (self.email or '').strip().lower()
        cell_phone = ''.join(ch for ch in (self.cell_phone or '') if ch.isdigit()) or None

        if not first_name or not last_name or not email:
            raise ValidationError('First name, last name, and email are required.')
        if '@' not in email or email.startswith('@') or email.endswith('@'):
            raise ValidationError('Email address is invalid.')

        return replace(self, first_name=first_name, last_name=last_name, email=email, cell_phone=cell_phone)


def find_or_create_patient(db: Session, provider_id: int, details: PatientDetails) -> Patient:
    """Match on email or cell phone within the provider, otherwise insert.

    Flushes but does not commit; the caller owns the transaction.
    """
    details = details.normalized()
    matches = [Patient.email == details.email]
    if details.cell_phone:
        matches.append(Patient.cell_phone == details.cell_phone)

    patient = db.query(Patient).filter(
        Patient.provider_id == provider_id,
        or_(*matches),
    ).order_by(Patient.id.asc()).first()

    now = datetime.now(timezone.utc)
    if patient is None:
        patient = Patient(
            provider_id=provider_id,
            first_name=details.first_name,
            last_name=details.last_name,
            email=details.email,
            cell_phone=details.cell_phone,
            allow_email=details.allow_email,
            allow_text=details.allow_text,
        )
        db.add(patient)

    patient.last_seen_at = now
    db.flush()
    return patient
