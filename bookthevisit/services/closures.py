"""Provider-edited schedule settings: weekly hours, recurring closures, time off, overrides.

Saturday and holiday closures are materialised as all-day time-off rows one
year ahead. Saving the settings deletes the previously generated rows and
regenerates them, so the rows always reflect the latest selections.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core import config
from bookthevisit.core.errors import StoreUnavailable, ValidationError
from bookthevisit.core.holidays import HOLIDAYS, compute_dates, is_supported_holiday
from bookthevisit.core.timezones import ensure_utc, local_today
from bookthevisit.models.availability import AvailabilityOverride, WeeklyAvailabilityRule
from bookthevisit.models.provider import Provider
from bookthevisit.models.time_off import (
    EVERY_OTHER_SATURDAY_REASON,
    HOLIDAY_REASON_PREFIX,
    ProviderHoliday,
    TimeOffEntry,
)

logger = logging.getLogger(__name__)

SATURDAY = 5


@dataclass(frozen=True)
class WeeklyRuleInput:
    day_of_week: int
    start_time: time
    end_time: time
    slot_interval: int = config.DEFAULT_SLOT_INTERVAL_MINUTES
    is_active: bool = True


def validate_weekly_rules(rules: list[WeeklyRuleInput]) -> None:
    for rule in rules:
        if not 0 <= rule.day_of_week <= 6:
            raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        if rule.end_time <= rule.start_time:
            raise ValidationError('End time must be after start time.')
        if rule.slot_interval <= 0:
            raise ValidationError('Slot interval must be a positive number of minutes.')

    active = sorted(
        (rule for rule in rules if rule.is_active),
        key=lambda rule: (rule.day_of_week, rule.start_time),
    )
    for previous, current in zip(active, active[1:]):
        if previous.day_of_week == current.day_of_week and current.start_time < previous.end_time:
            raise ValidationError('This block overlaps an existing block for the same day.')


def save_weekly_rules(db: Session, provider_id: int, rules: list[WeeklyRuleInput]) -> list[WeeklyAvailabilityRule]:
    validate_weekly_rules(rules)

    try:
        db.query(WeeklyAvailabilityRule).filter(WeeklyAvailabilityRule.provider_id == provider_id).delete(
            synchronize_session=False
        )
        saved = [
            WeeklyAvailabilityRule(
                provider_id=provider_id,
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
                slot_interval=rule.slot_interval,
                is_active=rule.is_active,
            )
            for rule in rules
        ]
        db.add_all(saved)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc

    return saved


def every_other_saturday_dates(base_date: date, range_start: date, range_end: date) -> list[date]:
    """Saturdays in range an odd number of whole weeks away from ``base_date``."""
    current = range_start
    while current.weekday() != SATURDAY:
        current += timedelta(days=1)

    dates: list[date] = []
    while current <= range_end:
        weeks_apart = (current - base_date).days // 7
        if weeks_apart % 2 == 1:
            dates.append(current)
        current += timedelta(days=7)
    return dates


def generated_reasons() -> list[str]:
    return [EVERY_OTHER_SATURDAY_REASON] + [f'{HOLIDAY_REASON_PREFIX}{key}' for key in HOLIDAYS]


def save_closure_settings(
    db: Session,
    provider: Provider,
    every_other_saturday: bool,
    saturday_start_date: date | None,
    holiday_keys: list[str],
    today: date | None = None,
) -> int:
    """Store Saturday/holiday selections and regenerate their closures. Returns rows generated."""
    unknown = [key for key in holiday_keys if not is_supported_holiday(key)]
    if unknown:
        raise ValidationError(f'Unknown holiday: {", ".join(sorted(unknown))}.')
    if every_other_saturday and saturday_start_date is None:
        raise ValidationError('A start date is required for every-other-Saturday closures.')

    today = today or local_today(provider.timezone)
    range_end = today + timedelta(days=config.CLOSURE_HORIZON_DAYS)
    selected = list(dict.fromkeys(holiday_keys))

    closures: list[TimeOffEntry] = []
    if every_other_saturday:
        closures.extend(
            TimeOffEntry(provider_id=provider.id, reason=EVERY_OTHER_SATURDAY_REASON, all_day=True, off_date=day)
            for day in every_other_saturday_dates(saturday_start_date, today, range_end)
        )
    for key in selected:
        closures.extend(
            TimeOffEntry(provider_id=provider.id, reason=f'{HOLIDAY_REASON_PREFIX}{key}', all_day=True, off_date=day)
            for day in compute_dates(key, today, range_end)
        )

    try:
        provider.every_other_saturday = every_other_saturday
        provider.saturday_start_date = saturday_start_date

        db.query(TimeOffEntry).filter(
            TimeOffEntry.provider_id == provider.id,
            TimeOffEntry.reason.in_(generated_reasons()),
        ).delete(synchronize_session=False)
        db.query(ProviderHoliday).filter(ProviderHoliday.provider_id == provider.id).delete(
            synchronize_session=False
        )

        db.add_all(ProviderHoliday(provider_id=provider.id, holiday_key=key) for key in selected)
        db.add_all(closures)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc

    logger.info('Regenerated %d closures for provider %s', len(closures), provider.id)
    return len(closures)


def add_time_off(
    db: Session,
    provider_id: int,
    reason: str | None = None,
    off_date: date | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
) -> TimeOffEntry:
    if off_date is not None and (start_time is not None or end_time is not None):
        raise ValidationError('Use either a closed date or a start and end time, not both.')

    if off_date is not None:
        entry = TimeOffEntry(provider_id=provider_id, reason=reason, all_day=True, off_date=off_date)
    else:
        if start_time is None or end_time is None:
            raise ValidationError('Time off needs a closed date or a start and end time.')
        start, end = ensure_utc(start_time), ensure_utc(end_time)
        if end <= start:
            raise ValidationError('End time must be after start time.')
        entry = TimeOffEntry(provider_id=provider_id, reason=reason, all_day=False, start_time=start, end_time=end)

    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc
    return entry


def add_override(db: Session, provider_id: int, start_time: datetime, end_time: datetime) -> AvailabilityOverride:
    start, end = ensure_utc(start_time), ensure_utc(end_time)
    if end <= start:
        raise ValidationError('End time must be after start time.')

    override = AvailabilityOverride(provider_id=provider_id, start_time=start, end_time=end, is_active=True)
    try:
        db.add(override)
        db.commit()
        db.refresh(override)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc
    return override


def delete_provider_row(db: Session, model, provider_id: int, row_id: int) -> bool:
    """Delete one time-off or override row owned by ``provider_id``."""
    try:
        deleted = db.query(model).filter(
            model.id == row_id,
            model.provider_id == provider_id,
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc
    return deleted > 0
