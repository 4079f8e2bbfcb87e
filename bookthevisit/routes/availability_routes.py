from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bookthevisit.core import errors
from bookthevisit.core.holidays import HOLIDAYS, compute_dates
from bookthevisit.database import get_db
from bookthevisit.routes.http_errors import ensure_database_ready, to_http_exception
from bookthevisit.services.resolver import AvailabilityResolver, AvailabilityResult

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    label: str
    start_time: datetime
    local_time: time


class AvailabilityResponse(BaseModel):
    provider_id: int
    date: date
    timezone: str
    status: str
    is_available: bool
    message: str | None = None
    slots: list[SlotResponse]
    request_id: str | None = None


class HolidayOptionResponse(BaseModel):
    key: str
    label: str


class HolidayDatesResponse(BaseModel):
    key: str
    dates: list[date]


def build_availability_response(result: AvailabilityResult, request_id: str | None = None) -> AvailabilityResponse:
    return AvailabilityResponse(
        provider_id=result.provider_id,
        date=result.date,
        timezone=result.timezone,
        status=result.status,
        is_available=result.is_available,
        message=result.message,
        slots=[
            SlotResponse(label=slot.label, start_time=slot.start, local_time=slot.local_start.time())
            for slot in result.slots
        ],
        request_id=request_id,
    )


@router.get('/holidays', response_model=list[HolidayOptionResponse])
def list_holidays():
    return [HolidayOptionResponse(key=key, label=label) for key, label in HOLIDAYS.items()]


@router.get('/holidays/{holiday_key}', response_model=HolidayDatesResponse)
def list_holiday_dates(
    holiday_key: str,
    start: date = Query(...),
    end: date = Query(...),
):
    if end < start:
        raise HTTPException(status_code=400, detail='End date must not be before start date.')

    try:
        return HolidayDatesResponse(key=holiday_key, dates=compute_dates(holiday_key, start, end))
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/{provider_id}', response_model=AvailabilityResponse)
def get_availability(
    provider_id: int,
    target_date: date = Query(..., alias='date'),
    exclude_appointment_id: int | None = Query(default=None),
    request_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    """Bookable slots for one local date.

    ``request_id`` is echoed back so a client can drop responses for a date
    the user has already moved away from.
    """
    ensure_database_ready()

    try:
        result = AvailabilityResolver(db).resolve(
            provider_id,
            target_date,
            exclude_appointment_id=exclude_appointment_id,
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return build_availability_response(result, request_id)
