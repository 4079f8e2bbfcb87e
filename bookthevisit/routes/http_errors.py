from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from bookthevisit.core import errors
from bookthevisit.database import ensure_appointment_schema, ensure_time_off_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'

_STATUS_BY_ERROR = (
    (errors.StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (errors.InvalidTimezone, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (errors.SlotConflict, status.HTTP_409_CONFLICT),
    (errors.InvalidSlotSelection, status.HTTP_409_CONFLICT),
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (errors.ProviderNotFound, status.HTTP_404_NOT_FOUND),
    (errors.AppointmentNotFound, status.HTTP_404_NOT_FOUND),
)


def to_http_exception(exc: errors.BookingError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


def ensure_database_ready() -> None:
    try:
        ensure_time_off_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
