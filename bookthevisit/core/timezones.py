"""Conversions between a provider's wall clock and UTC instants.

Stored instants are UTC. Anything a provider configures (weekly hours,
calendar dates) is wall-clock time in the provider's IANA zone, so every
comparison against stored rows goes through ``local_to_utc`` first.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bookthevisit.core.errors import InvalidTimezone

SLOT_LABEL_FORMAT = '%I:%M %p'


@lru_cache(maxsize=256)
def get_zone(name: str | None) -> ZoneInfo:
    if not name or not name.strip():
        raise InvalidTimezone(name)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezone(name) from exc


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite hands timestamps back without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_to_utc(local_wall_clock: datetime, tz_name: str) -> datetime:
    """Interpret a naive wall-clock datetime in ``tz_name`` and return the UTC instant.

    Ambiguous wall-clock times (DST fall back) resolve to the first occurrence.
    Skipped times (DST spring forward) are shifted forward by the gap, which
    keeps them on the same calendar day.
    """
    zone = get_zone(tz_name)
    naive = local_wall_clock.replace(tzinfo=None, fold=0)
    return naive.replace(tzinfo=zone).astimezone(timezone.utc)


def utc_to_local(instant: datetime, tz_name: str) -> datetime:
    """Return the naive wall-clock time of ``instant`` in ``tz_name``."""
    zone = get_zone(tz_name)
    return ensure_utc(instant).astimezone(zone).replace(tzinfo=None, fold=0)


def format_local(value: datetime, tz_name: str, pattern: str) -> str:
    """Format for display. Aware values are converted, naive ones are taken as local already."""
    if value.tzinfo is not None:
        value = utc_to_local(value, tz_name)
    else:
        get_zone(tz_name)
    return value.strftime(pattern)


def slot_label(local_wall_clock: datetime | time) -> str:
    label = local_wall_clock.strftime(SLOT_LABEL_FORMAT)
    return label[1:] if label.startswith('0') else label


def local_day_bounds(target_date: date, tz_name: str) -> tuple[datetime, datetime]:
    """UTC instants for local midnight and local 23:59:59.999999 of ``target_date``."""
    day_start = datetime.combine(target_date, time.min)
    day_end = datetime.combine(target_date, time.max)
    return local_to_utc(day_start, tz_name), local_to_utc(day_end, tz_name)


def local_today(tz_name: str, now: datetime | None = None) -> date:
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    return utc_to_local(now, tz_name).date()


def iterate_local_steps(start: datetime, end: datetime, step_minutes: int):
    """Yield naive wall-clock datetimes from ``start`` while strictly before ``end``."""
    if step_minutes <= 0:
        raise ValueError('step_minutes must be positive.')

    current = start
    step = timedelta(minutes=step_minutes)
    while current < end:
        yield current
        current += step
