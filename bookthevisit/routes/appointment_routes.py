from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from bookthevisit.core import config, errors
from bookthevisit.core.timezones import ensure_utc
from bookthevisit.database import get_db
from bookthevisit.models.service import PATIENT_TYPES
from bookthevisit.routes.http_errors import ensure_database_ready, to_http_exception
from bookthevisit.services.committer import BookingCommitter, BookingOutcome
from bookthevisit.services.notifications import EmailSender, TemplatedEmailSender
from bookthevisit.services.patients import PatientDetails

router = APIRouter(tags=['appointments'])


class PatientRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    cell_phone: str | None = None
    allow_email: bool = True
    allow_text: bool = True

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Email is required.')
        return normalized


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    start_time: datetime
    patient: PatientRequest
    service_id: int | None = None
    patient_type: str | None = None
    notes: str | None = None

    @field_validator('patient_type')
    @classmethod
    def validate_patient_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in PATIENT_TYPES:
            raise ValueError('Patient type must be "new" or "established".')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_PATIENT_NOTE_LENGTH:
            raise ValueError(f'Notes must be {config.MAX_PATIENT_NOTE_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    token: str
    start_time: datetime
    service_id: int | None = None


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    patient_id: int | None = None
    service_id: int | None = None
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    manage_token: str
    rescheduled: bool
    emails_sent: bool
    email_errors: list[str]


def get_email_sender(db: Session = Depends(get_db)) -> EmailSender:
    return TemplatedEmailSender(db)


def build_appointment_response(appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        provider_id=appointment.provider_id,
        patient_id=appointment.patient_id,
        service_id=appointment.service_id,
        start_time=ensure_utc(appointment.start_time),
        end_time=ensure_utc(appointment.end_time),
        status=appointment.status,
        notes=appointment.patient_note,
    )


def build_booking_response(outcome: BookingOutcome) -> BookingResponse:
    return BookingResponse(
        appointment=build_appointment_response(outcome.appointment),
        manage_token=outcome.appointment.manage_token,
        rescheduled=outcome.rescheduled,
        emails_sent=outcome.emails_sent,
        email_errors=outcome.email_errors,
    )


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
):
    ensure_database_ready()

    try:
        outcome = BookingCommitter(db, email_sender).commit(
            data.provider_id,
            data.start_time,
            patient=PatientDetails(**data.patient.model_dump()),
            service_id=data.service_id,
            patient_type=data.patient_type,
            patient_note=data.notes,
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return build_booking_response(outcome)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_managed_appointment(
    appointment_id: int,
    token: str = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = BookingCommitter(db).get_managed_appointment(appointment_id, token)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return build_appointment_response(appointment)


@router.put('/{appointment_id}', response_model=BookingResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
):
    ensure_database_ready()

    try:
        committer = BookingCommitter(db, email_sender)
        appointment = committer.get_managed_appointment(appointment_id, data.token)
        outcome = committer.commit(
            appointment.provider_id,
            data.start_time,
            service_id=data.service_id,
            appointment_id=appointment_id,
            manage_token=data.token,
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return build_booking_response(outcome)


@router.post('/{appointment_id}/cancel', response_model=BookingResponse)
def cancel_appointment(
    appointment_id: int,
    token: str = Query(...),
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
):
    ensure_database_ready()

    try:
        outcome = BookingCommitter(db, email_sender).cancel(appointment_id, token)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return build_booking_response(outcome)
