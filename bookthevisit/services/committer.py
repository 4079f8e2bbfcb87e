"""Conflict-checked booking writes.

The check-then-write sequence runs under a per-provider lock in this
process. On PostgreSQL the ``appointments_no_booked_overlap`` exclusion
constraint is the authoritative guard across processes, and an
``IntegrityError`` from it is reported as ``SlotConflict`` like the
in-process check.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core import config
from bookthevisit.core.errors import (
    AppointmentNotFound,
    BookingError,
    InvalidSlotSelection,
    SlotConflict,
    StoreUnavailable,
    ValidationError,
)
from bookthevisit.core.timezones import ensure_utc, utc_to_local
from bookthevisit.database import APPOINTMENT_OVERLAP_CONSTRAINT
from bookthevisit.models.appointment import BOOKED, CANCELLED, Appointment
from bookthevisit.models.patient import Patient
from bookthevisit.models.service import PATIENT_TYPES, Service
from bookthevisit.services.notifications import EmailSender, send_appointment_emails
from bookthevisit.services.patients import PatientDetails, find_or_create_patient
from bookthevisit.services.resolver import AvailabilityResolver

logger = logging.getLogger(__name__)

_provider_locks: dict[int, Lock] = {}
_provider_locks_guard = Lock()


def provider_lock(provider_id: int) -> Lock:
    with _provider_locks_guard:
        lock = _provider_locks.get(provider_id)
        if lock is None:
            lock = Lock()
            _provider_locks[provider_id] = lock
        return lock


def generate_manage_token() -> str:
    return secrets.token_urlsafe(32)


def is_overlap_violation(exc: IntegrityError) -> bool:
    return APPOINTMENT_OVERLAP_CONSTRAINT in str(exc.orig)


@dataclass
class BookingOutcome:
    appointment: Appointment
    rescheduled: bool = False
    email_errors: list[str] = field(default_factory=list)

    @property
    def emails_sent(self) -> bool:
        return not self.email_errors


class BookingCommitter:
    def __init__(
        self,
        db: Session,
        email_sender: EmailSender | None = None,
        resolver: AvailabilityResolver | None = None,
    ):
        self.db = db
        self.email_sender = email_sender
        self.resolver = resolver or AvailabilityResolver(db)
        self.store = self.resolver.store

    def resolve_service(
        self,
        provider_id: int,
        service_id: int | None = None,
        patient_type: str | None = None,
    ) -> Service:
        query = self.db.query(Service).filter(
            Service.provider_id == provider_id,
            Service.is_active.is_(True),
        )
        try:
            if service_id is not None:
                service = query.filter(Service.id == service_id).first()
            elif patient_type is not None:
                if patient_type not in PATIENT_TYPES:
                    raise ValidationError('Patient type must be "new" or "established".')
                service = query.filter(Service.default_for == patient_type).order_by(Service.id.asc()).first()
            else:
                raise ValidationError('A service or patient type is required.')
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

        if service is None:
            raise ValidationError('No matching service available.')
        if not service.duration_minutes or service.duration_minutes <= 0:
            raise ValidationError('Service duration is not configured.')
        return service

    def find_conflicts(
        self,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        filters = [
            Appointment.provider_id == provider_id,
            Appointment.status == BOOKED,
            Appointment.start_time < end,
            Appointment.end_time > start,
        ]
        if exclude_appointment_id is not None:
            filters.append(Appointment.id != exclude_appointment_id)
        try:
            return self.db.query(Appointment).filter(*filters).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

    def get_managed_appointment(self, appointment_id: int, manage_token: str | None) -> Appointment:
        """Patient-facing lookup. Both the id and its manage token must match."""
        if not manage_token:
            raise AppointmentNotFound()
        try:
            appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

        if appointment is None or not appointment.manage_token:
            raise AppointmentNotFound()
        if not secrets.compare_digest(appointment.manage_token, manage_token):
            raise AppointmentNotFound()
        return appointment

    def commit(
        self,
        provider_id: int,
        start_time: datetime,
        patient: PatientDetails | None = None,
        service_id: int | None = None,
        patient_type: str | None = None,
        appointment_id: int | None = None,
        manage_token: str | None = None,
        patient_note: str | None = None,
        now: datetime | None = None,
    ) -> BookingOutcome:
        """Book ``start_time`` or move ``appointment_id`` there.

        Raises ``SlotConflict`` when a booked appointment overlaps the new
        interval and ``InvalidSlotSelection`` when a fresh resolution no longer
        offers the start. Either way the caller should re-resolve availability.
        """
        provider = self.store.get_provider(provider_id)
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        existing = None
        if appointment_id is not None:
            existing = self._load_for_reschedule(provider_id, appointment_id, manage_token)
            if service_id is None and patient_type is None:
                service_id = existing.service_id
        elif patient is None:
            raise ValidationError('Patient details are required.')

        details = patient.normalized() if patient is not None else None
        service = self.resolve_service(provider_id, service_id, patient_type)
        note = self._normalize_note(patient_note)

        start = ensure_utc(start_time)
        if start.second or start.microsecond:
            raise InvalidSlotSelection()
        end = start + timedelta(minutes=service.duration_minutes)

        with provider_lock(provider_id):
            try:
                if self.find_conflicts(provider_id, start, end, appointment_id):
                    raise SlotConflict()

                if start <= now:
                    raise InvalidSlotSelection('Appointments must be scheduled in the future.')

                local_date = utc_to_local(start, provider.timezone).date()
                fresh = self.resolver.resolve(
                    provider_id,
                    local_date,
                    provider.timezone,
                    exclude_appointment_id=appointment_id,
                    now=now,
                )
                if fresh.find_slot(start) is None:
                    raise InvalidSlotSelection()

                patient_row = find_or_create_patient(self.db, provider_id, details) if details else None

                if existing is not None:
                    appointment = existing
                    appointment.start_time = start
                    appointment.end_time = end
                    appointment.service_id = service.id
                    appointment.status = BOOKED
                    appointment.reminder_24h_sent_at = None
                    appointment.reminder_2h_sent_at = None
                    if patient_row is not None:
                        appointment.patient_id = patient_row.id
                    if note is not None:
                        appointment.patient_note = note
                else:
                    appointment = Appointment(
                        provider_id=provider_id,
                        patient_id=patient_row.id,
                        service_id=service.id,
                        start_time=start,
                        end_time=end,
                        status=BOOKED,
                        manage_token=generate_manage_token(),
                        patient_note=note,
                    )
                    self.db.add(appointment)

                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if not is_overlap_violation(exc):
                    raise StoreUnavailable() from exc
                logger.info('Storage rejected overlapping booking for provider %s at %s', provider_id, start)
                raise SlotConflict() from exc
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise StoreUnavailable() from exc
            except BookingError:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            '%s appointment %s for provider %s at %s',
            'Rescheduled' if existing is not None else 'Booked',
            appointment.id,
            provider_id,
            start.isoformat(),
        )

        email_errors = send_appointment_emails(
            self.email_sender,
            provider,
            self._load_patient(appointment.patient_id),
            service,
            appointment,
            'update' if existing is not None else 'confirmation',
            'provider_update' if existing is not None else 'provider_confirmation',
        )
        return BookingOutcome(appointment=appointment, rescheduled=existing is not None, email_errors=email_errors)

    def cancel(self, appointment_id: int, manage_token: str | None) -> BookingOutcome:
        appointment = self.get_managed_appointment(appointment_id, manage_token)
        if appointment.status == CANCELLED:
            return BookingOutcome(appointment=appointment)

        try:
            appointment.status = CANCELLED
            self.db.commit()
            self.db.refresh(appointment)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc

        logger.info('Cancelled appointment %s for provider %s', appointment.id, appointment.provider_id)

        provider = self.store.get_provider(appointment.provider_id)
        service = self.db.query(Service).filter(Service.id == appointment.service_id).first()
        email_errors = send_appointment_emails(
            self.email_sender,
            provider,
            self._load_patient(appointment.patient_id),
            service,
            appointment,
            'cancellation',
            'provider_cancellation',
        )
        return BookingOutcome(appointment=appointment, email_errors=email_errors)

    def _load_for_reschedule(self, provider_id: int, appointment_id: int, manage_token: str | None) -> Appointment:
        if manage_token is not None:
            appointment = self.get_managed_appointment(appointment_id, manage_token)
        else:
            try:
                appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
            except SQLAlchemyError as exc:
                raise StoreUnavailable() from exc

        if appointment is None or appointment.provider_id != provider_id:
            raise AppointmentNotFound()
        return appointment

    def _load_patient(self, patient_id: int | None) -> Patient | None:
        if patient_id is None:
            return None
        return self.db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def _normalize_note(note: str | None) -> str | None:
        if note is None:
            return None
        normalized = note.strip()
        if not normalized:
            return None
        if len(normalized) > config.MAX_PATIENT_NOTE_LENGTH:
            raise ValidationError(f'Notes must be {config.MAX_PATIENT_NOTE_LENGTH} characters or fewer.')
        return normalized
