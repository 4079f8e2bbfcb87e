"""Reminder sweep: same-day (about 2h) and day-before (about 24h) emails.

Safe to run repeatedly. Each window stamps its own sent-at column, so an
appointment gets at most one reminder per window.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core import config
from bookthevisit.core.errors import StoreUnavailable
from bookthevisit.core.timezones import ensure_utc
from bookthevisit.models.appointment import BOOKED, Appointment
from bookthevisit.models.patient import Patient
from bookthevisit.models.provider import Provider
from bookthevisit.models.service import Service
from bookthevisit.services.notifications import EmailSender, send_appointment_emails

logger = logging.getLogger(__name__)

SENT_AT_COLUMNS = {
    '2h': 'reminder_2h_sent_at',
    '24h': 'reminder_24h_sent_at',
}


@dataclass(frozen=True)
class DueReminder:
    appointment: Appointment
    window: str


def reminder_window(start: datetime, now: datetime) -> str | None:
    minutes_ahead = (ensure_utc(start) - ensure_utc(now)).total_seconds() / 60
    for window, (earliest, latest) in config.REMINDER_WINDOWS.items():
        if earliest <= minutes_ahead <= latest:
            return window
    return None


def find_due_reminders(db: Session, now: datetime | None = None) -> list[DueReminder]:
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    earliest = min(low for low, _ in config.REMINDER_WINDOWS.values())
    latest = max(high for _, high in config.REMINDER_WINDOWS.values())

    try:
        appointments = db.query(Appointment).join(
            Provider, Provider.id == Appointment.provider_id
        ).filter(
            Appointment.status == BOOKED,
            Appointment.start_time >= now + timedelta(minutes=earliest),
            Appointment.start_time <= now + timedelta(minutes=latest),
            Provider.send_reminders.is_(True),
            Provider.is_active.is_(True),
        ).order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise StoreUnavailable() from exc

    due: list[DueReminder] = []
    for appointment in appointments:
        window = reminder_window(appointment.start_time, now)
        if window is None:
            continue
        if getattr(appointment, SENT_AT_COLUMNS[window]) is not None:
            continue
        due.append(DueReminder(appointment=appointment, window=window))
    return due


def send_due_reminders(db: Session, sender: EmailSender, now: datetime | None = None) -> int:
    """Send every due reminder. Returns how many were delivered."""
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    due = find_due_reminders(db, now)
    if not due:
        logger.info('No reminders due in this window.')
        return 0

    sent = 0
    for reminder in due:
        appointment = reminder.appointment
        provider = db.query(Provider).filter(Provider.id == appointment.provider_id).first()
        patient = db.query(Patient).filter(Patient.id == appointment.patient_id).first()
        service = db.query(Service).filter(Service.id == appointment.service_id).first()

        if patient is None or not patient.email:
            logger.info('Skipping appointment %s: no patient email', appointment.id)
            continue
        if not patient.allow_email:
            logger.info('Skipping appointment %s: patient opted out of email', appointment.id)
            continue

        errors = send_appointment_emails(sender, provider, patient, service, appointment, 'reminder', None)
        if errors:
            continue

        setattr(appointment, SENT_AT_COLUMNS[reminder.window], now)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreUnavailable() from exc
        sent += 1
        logger.info('%s reminder sent for appointment %s', reminder.window, appointment.id)

    return sent
