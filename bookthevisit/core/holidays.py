"""Concrete dates for the holiday closures a provider can select."""

import calendar
from datetime import date, timedelta

from bookthevisit.core.errors import ValidationError

MONDAY = 0
THURSDAY = 3

HOLIDAYS = {
    'new_years': "New Year's Day (Jan 1)",
    'mlk_day': 'MLK Jr. Day (3rd Mon in Jan)',
    'memorial_day': 'Memorial Day (last Mon in May)',
    'independence_day': 'Independence Day (Jul 4)',
    'labor_day': 'Labor Day (1st Mon in Sep)',
    'thanksgiving': 'Thanksgiving (4th Thu in Nov)',
    'christmas': 'Christmas Day (Dec 25)',
}


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    current = date(year, month, 1)
    count = 0
    while True:
        if current.weekday() == weekday:
            count += 1
            if count == n:
                return current
        current += timedelta(days=1)


def last_weekday_of_month(year: int, month: int, weekday: int) -> date:
    current = date(year, month, calendar.monthrange(year, month)[1])
    while current.weekday() != weekday:
        current -= timedelta(days=1)
    return current


_HOLIDAY_RULES = {
    'new_years': lambda year: date(year, 1, 1),
    'mlk_day': lambda year: nth_weekday_of_month(year, 1, MONDAY, 3),
    'memorial_day': lambda year: last_weekday_of_month(year, 5, MONDAY),
    'independence_day': lambda year: date(year, 7, 4),
    'labor_day': lambda year: nth_weekday_of_month(year, 9, MONDAY, 1),
    'thanksgiving': lambda year: nth_weekday_of_month(year, 11, THURSDAY, 4),
    'christmas': lambda year: date(year, 12, 25),
}


def is_supported_holiday(holiday_key: str) -> bool:
    return holiday_key in _HOLIDAY_RULES


def compute_dates(holiday_key: str, range_start: date, range_end: date) -> list[date]:
    """Dates of ``holiday_key`` falling within ``[range_start, range_end]``, ascending."""
    rule = _HOLIDAY_RULES.get(holiday_key)
    if rule is None:
        raise ValidationError(f'Unknown holiday: {holiday_key}.')

    dates: list[date] = []
    for year in range(range_start.year, range_end.year + 1):
        holiday = rule(year)
        if range_start <= holiday <= range_end:
            dates.append(holiday)

    return dates
