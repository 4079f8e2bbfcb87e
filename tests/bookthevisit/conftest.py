import os
from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from bookthevisit.core.errors import EmailDeliveryError  # noqa: E402
from bookthevisit.database import Base  # noqa: E402
from bookthevisit.models.appointment import BOOKED, Appointment  # noqa: E402
from bookthevisit.models.availability import AvailabilityOverride, WeeklyAvailabilityRule  # noqa: E402
from bookthevisit.models.email_template import EmailTemplate  # noqa: E402,F401
from bookthevisit.models.patient import Patient  # noqa: E402
from bookthevisit.models.provider import Provider  # noqa: E402
from bookthevisit.models.service import Service  # noqa: E402
from bookthevisit.models.time_off import ProviderHoliday, TimeOffEntry  # noqa: E402,F401

NEW_YORK = 'America/New_York'


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class RecordingEmailSender:
    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[tuple[str, str, int, dict]] = []
        self.fail_for = fail_for or set()

    def send(self, template_type: str, to: str, provider_id: int, data: dict) -> None:
        if template_type in self.fail_for:
            raise EmailDeliveryError(f'{template_type} email to {to} failed')
        self.sent.append((template_type, to, provider_id, data))


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def provider(db):
    row = Provider(
        subdomain='smith',
        office_name='Smith Chiropractic',
        email='office@smith.example',
        phone='555-0100',
        timezone=NEW_YORK,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def services(db, provider):
    established = Service(
        provider_id=provider.id, name='Adjustment', duration_minutes=30, default_for='established'
    )
    new = Service(
        provider_id=provider.id, name='New Patient Evaluation', duration_minutes=60, default_for='new'
    )
    db.add_all([established, new])
    db.commit()
    return {'established': established, 'new': new}


@pytest.fixture
def patient(db, provider):
    row = Patient(
        provider_id=provider.id,
        first_name='Ada',
        last_name='Lovelace',
        email='ada@example.com',
        cell_phone='5550101',
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def add_rule(db, provider):
    def _add_rule(day_of_week: int, start: time, end: time, slot_interval: int = 30, is_active: bool = True):
        rule = WeeklyAvailabilityRule(
            provider_id=provider.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            slot_interval=slot_interval,
            is_active=is_active,
        )
        db.add(rule)
        db.commit()
        return rule

    return _add_rule


@pytest.fixture
def add_appointment(db, provider):
    def _add_appointment(start: datetime, end: datetime, status: str = BOOKED, patient_id: int | None = None,
                         service_id: int | None = None, manage_token: str | None = None):
        appointment = Appointment(
            provider_id=provider.id,
            patient_id=patient_id,
            service_id=service_id,
            start_time=start,
            end_time=end,
            status=status,
            manage_token=manage_token,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add_appointment


@pytest.fixture
def add_time_off(db, provider):
    def _add_time_off(off_date: date | None = None, start: datetime | None = None, end: datetime | None = None,
                      all_day: bool = False, reason: str | None = None):
        entry = TimeOffEntry(
            provider_id=provider.id,
            reason=reason,
            all_day=all_day,
            off_date=off_date,
            start_time=start,
            end_time=end,
        )
        db.add(entry)
        db.commit()
        return entry

    return _add_time_off


@pytest.fixture
def add_override(db, provider):
    def _add_override(start: datetime, end: datetime, is_active: bool = True):
        override = AvailabilityOverride(provider_id=provider.id, start_time=start, end_time=end, is_active=is_active)
        db.add(override)
        db.commit()
        return override

    return _add_override


@pytest.fixture
def email_sender():
    return RecordingEmailSender()
