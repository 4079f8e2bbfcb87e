from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core import config, errors
from bookthevisit.core.timezones import ensure_utc
from bookthevisit.database import get_db
from bookthevisit.models.availability import AvailabilityOverride, WeeklyAvailabilityRule
from bookthevisit.models.service import Service
from bookthevisit.models.time_off import TimeOffEntry
from bookthevisit.routes.http_errors import DATABASE_UNAVAILABLE_DETAIL, ensure_database_ready, to_http_exception
from bookthevisit.services import closures
from bookthevisit.services.rule_store import ScheduleRuleStore

router = APIRouter(tags=['providers'])


class WeeklyRuleRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    slot_interval: int = Field(default=config.DEFAULT_SLOT_INTERVAL_MINUTES, gt=0)
    is_active: bool = True


class WeeklyRuleResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: time
    end_time: time
    slot_interval: int
    is_active: bool

    class Config:
        from_attributes = True


class ClosureSettingsRequest(BaseModel):
    every_other_saturday: bool = False
    saturday_start_date: date | None = None
    holidays: list[str] = []

    @field_validator('holidays')
    @classmethod
    def normalize_holidays(cls, value: list[str]) -> list[str]:
        return [key.strip().lower() for key in value if key.strip()]


class ClosureSettingsResponse(BaseModel):
    every_other_saturday: bool
    saturday_start_date: date | None = None
    holidays: list[str]
    closures_generated: int


class CreateTimeOffRequest(BaseModel):
    reason: str | None = None
    off_date: date | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class TimeOffResponse(BaseModel):
    id: int
    reason: str | None = None
    all_day: bool
    off_date: date | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class CreateOverrideRequest(BaseModel):
    start_time: datetime
    end_time: datetime


class OverrideResponse(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    is_active: bool


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    duration_minutes: int
    default_for: str | None = None

    class Config:
        from_attributes = True


def load_provider(provider_id: int, db: Session):
    try:
        return ScheduleRuleStore(db).get_provider(provider_id)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/{provider_id}/hours', response_model=list[WeeklyRuleResponse])
def list_hours(provider_id: int, db: Session = Depends(get_db)):
    load_provider(provider_id, db)

    try:
        return db.query(WeeklyAvailabilityRule).filter(
            WeeklyAvailabilityRule.provider_id == provider_id,
        ).order_by(WeeklyAvailabilityRule.day_of_week.asc(), WeeklyAvailabilityRule.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.put('/{provider_id}/hours', response_model=list[WeeklyRuleResponse])
def save_hours(provider_id: int, data: list[WeeklyRuleRequest], db: Session = Depends(get_db)):
    load_provider(provider_id, db)

    try:
        return closures.save_weekly_rules(
            db,
            provider_id,
            [closures.WeeklyRuleInput(**rule.model_dump()) for rule in data],
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc


@router.put('/{provider_id}/closures', response_model=ClosureSettingsResponse)
def save_closures(provider_id: int, data: ClosureSettingsRequest, db: Session = Depends(get_db)):
    ensure_database_ready()
    provider = load_provider(provider_id, db)

    try:
        generated = closures.save_closure_settings(
            db,
            provider,
            data.every_other_saturday,
            data.saturday_start_date,
            data.holidays,
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return ClosureSettingsResponse(
        every_other_saturday=data.every_other_saturday,
        saturday_start_date=data.saturday_start_date,
        holidays=list(dict.fromkeys(data.holidays)),
        closures_generated=generated,
    )


@router.post('/{provider_id}/time-off', response_model=TimeOffResponse, status_code=status.HTTP_201_CREATED)
def create_time_off(provider_id: int, data: CreateTimeOffRequest, db: Session = Depends(get_db)):
    ensure_database_ready()
    load_provider(provider_id, db)

    try:
        entry = closures.add_time_off(
            db,
            provider_id,
            reason=data.reason,
            off_date=data.off_date,
            start_time=data.start_time,
            end_time=data.end_time,
        )
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return TimeOffResponse(
        id=entry.id,
        reason=entry.reason,
        all_day=entry.all_day,
        off_date=entry.off_date,
        start_time=ensure_utc(entry.start_time) if entry.start_time else None,
        end_time=ensure_utc(entry.end_time) if entry.end_time else None,
    )


@router.delete('/{provider_id}/time-off/{time_off_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_time_off(provider_id: int, time_off_id: int, db: Session = Depends(get_db)):
    try:
        deleted = closures.delete_provider_row(db, TimeOffEntry, provider_id, time_off_id)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Time off not found.')


@router.post('/{provider_id}/overrides', response_model=OverrideResponse, status_code=status.HTTP_201_CREATED)
def create_override(provider_id: int, data: CreateOverrideRequest, db: Session = Depends(get_db)):
    load_provider(provider_id, db)

    try:
        override = closures.add_override(db, provider_id, data.start_time, data.end_time)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    return OverrideResponse(
        id=override.id,
        start_time=ensure_utc(override.start_time),
        end_time=ensure_utc(override.end_time),
        is_active=override.is_active,
    )


@router.delete('/{provider_id}/overrides/{override_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_override(provider_id: int, override_id: int, db: Session = Depends(get_db)):
    try:
        deleted = closures.delete_provider_row(db, AvailabilityOverride, provider_id, override_id)
    except errors.BookingError as exc:
        raise to_http_exception(exc) from exc

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Override not found.')


@router.get('/{provider_id}/services', response_model=list[ServiceResponse])
def list_services(provider_id: int, db: Session = Depends(get_db)):
    load_provider(provider_id, db)

    try:
        return db.query(Service).filter(
            Service.provider_id == provider_id,
            Service.is_active.is_(True),
        ).order_by(Service.name.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
