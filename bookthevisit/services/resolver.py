"""Bookable slot resolution for one provider and one local calendar date.

Four independent layers are combined in a single pass: weekly hours,
time off (closed days and closed ranges), overrides that open extra time,
and booked appointments. All comparisons are made on UTC instants; local
wall-clock times only exist to generate candidates and labels.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from threading import Lock

from sqlalchemy.orm import Session

from bookthevisit.core import config
from bookthevisit.core.timezones import (
    ensure_utc,
    iterate_local_steps,
    local_day_bounds,
    local_to_utc,
    local_today,
    slot_label,
    utc_to_local,
)
from bookthevisit.services.rule_store import ScheduleRuleStore

logger = logging.getLogger(__name__)

OPEN = 'open'
CLOSED = 'closed'
FULLY_BOOKED = 'fully_booked'
NO_AVAILABILITY_MESSAGE = 'No available times on this date.'


@dataclass(frozen=True)
class Slot:
    start: datetime
    local_start: datetime
    label: str


@dataclass(frozen=True)
class BlockedInterval:
    start: datetime
    end: datetime
    all_day: bool = False
    local_date: date | None = None
    # Only time off can be reopened by an override; bookings never are.
    freeable: bool = False

    def blocks(self, slot: Slot) -> bool:
        if self.all_day:
            return slot.local_start.date() == self.local_date
        return self.start <= slot.start < self.end


@dataclass(frozen=True)
class AvailabilityResult:
    provider_id: int
    date: date
    timezone: str
    status: str
    slots: tuple[Slot, ...] = ()
    message: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status == OPEN

    def find_slot(self, start: datetime) -> Slot | None:
        start = ensure_utc(start)
        for slot in self.slots:
            if slot.start == start:
                return slot
        return None


def day_of_week(target_date: date) -> int:
    """Sunday=0 through Saturday=6."""
    return (target_date.weekday() + 1) % 7


def _no_availability(provider_id: int, target_date: date, tz_name: str, status: str) -> AvailabilityResult:
    return AvailabilityResult(
        provider_id=provider_id,
        date=target_date,
        timezone=tz_name,
        status=status,
        message=NO_AVAILABILITY_MESSAGE,
    )


def _to_slot(instant: datetime, tz_name: str) -> Slot:
    local_start = utc_to_local(instant, tz_name)
    return Slot(start=instant, local_start=local_start, label=slot_label(local_start))


class AvailabilityResolver:
    def __init__(self, db: Session | None = None, store: ScheduleRuleStore | None = None):
        if store is None and db is None:
            raise ValueError('AvailabilityResolver needs a session or a rule store.')
        self.store = store or ScheduleRuleStore(db)

    def resolve(
        self,
        provider_id: int,
        target_date: date,
        tz_name: str | None = None,
        exclude_appointment_id: int | None = None,
        now: datetime | None = None,
    ) -> AvailabilityResult:
        if tz_name is None:
            tz_name = self.store.get_provider(provider_id).timezone
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        window_start, window_end = local_day_bounds(target_date, tz_name)

        candidates = self._rule_candidates(provider_id, target_date, tz_name)

        time_off = self.store.get_time_off(provider_id, window_start, window_end, off_date=target_date)
        if any(self._closes_whole_day(entry, target_date, tz_name) for entry in time_off):
            # Overrides are not consulted for closed days.
            logger.debug('Provider %s closed all day on %s', provider_id, target_date)
            return _no_availability(provider_id, target_date, tz_name, CLOSED)

        override_windows = self._override_windows(provider_id, target_date, tz_name)
        for override_start, override_end in override_windows:
            candidates.update(self._override_candidates(override_start, override_end, target_date, tz_name))

        if not candidates:
            return _no_availability(provider_id, target_date, tz_name, CLOSED)

        slots = [_to_slot(instant, tz_name) for instant in sorted(candidates)]

        blocked = self._blocked_intervals(
            provider_id, window_start, window_end, time_off, tz_name, exclude_appointment_id
        )
        if override_windows:
            blocked = [
                interval for interval in blocked
                if not interval.freeable or not any(
                    override_start <= interval.start and interval.end <= override_end
                    for override_start, override_end in override_windows
                )
            ]

        slots = [slot for slot in slots if not any(interval.blocks(slot) for interval in blocked)]

        if target_date == local_today(tz_name, now):
            slots = [slot for slot in slots if slot.start > now]

        if not slots:
            return _no_availability(provider_id, target_date, tz_name, FULLY_BOOKED)

        return AvailabilityResult(
            provider_id=provider_id,
            date=target_date,
            timezone=tz_name,
            status=OPEN,
            slots=tuple(slots),
        )

    def _rule_candidates(self, provider_id: int, target_date: date, tz_name: str) -> set[datetime]:
        candidates: set[datetime] = set()
        for rule in self.store.get_weekly_rules(provider_id, day_of_week(target_date)):
            rule_start = datetime.combine(target_date, rule.start_time)
            rule_end = datetime.combine(target_date, rule.end_time)
            step = rule.slot_interval or config.DEFAULT_SLOT_INTERVAL_MINUTES
            # Overlapping rules collapse onto the same instants here.
            for local_start in iterate_local_steps(rule_start, rule_end, step):
                candidates.add(local_to_utc(local_start, tz_name))
        return candidates

    @staticmethod
    def _closes_whole_day(entry, target_date: date, tz_name: str) -> bool:
        if not entry.all_day:
            return False
        if entry.off_date is not None:
            return entry.off_date == target_date
        if entry.start_time is None or entry.end_time is None:
            return False
        first_day = utc_to_local(entry.start_time, tz_name).date()
        last_day = utc_to_local(entry.end_time, tz_name).date()
        return first_day <= target_date <= last_day

    def _override_windows(self, provider_id: int, target_date: date, tz_name: str) -> list[tuple[datetime, datetime]]:
        windows: list[tuple[datetime, datetime]] = []
        for override in self.store.get_overrides(provider_id):
            override_start = ensure_utc(override.start_time)
            override_end = ensure_utc(override.end_time)
            local_dates = {
                utc_to_local(override_start, tz_name).date(),
                utc_to_local(override_end, tz_name).date(),
            }
            if target_date in local_dates:
                windows.append((override_start, override_end))
        return windows

    @staticmethod
    def _override_candidates(
        override_start: datetime,
        override_end: datetime,
        target_date: date,
        tz_name: str,
    ) -> set[datetime]:
        local_start = utc_to_local(override_start, tz_name)
        local_end = utc_to_local(override_end, tz_name)
        return {
            local_to_utc(step, tz_name)
            for step in iterate_local_steps(local_start, local_end, config.OVERRIDE_SLOT_INTERVAL_MINUTES)
            if step.date() == target_date
        }

    def _blocked_intervals(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        time_off: list,
        tz_name: str,
        exclude_appointment_id: int | None,
    ) -> list[BlockedInterval]:
        appointments = self.store.get_booked_appointments(
            provider_id, window_start, window_end, exclude_appointment_id
        )
        blocked = [
            BlockedInterval(start=ensure_utc(appointment.start_time), end=ensure_utc(appointment.end_time))
            for appointment in appointments
        ]

        for entry in time_off:
            if entry.start_time is not None and entry.end_time is not None:
                start, end = ensure_utc(entry.start_time), ensure_utc(entry.end_time)
                local_date = entry.off_date or utc_to_local(start, tz_name).date()
            elif entry.off_date is not None:
                start, end = local_day_bounds(entry.off_date, tz_name)
                end += timedelta(microseconds=1)
                local_date = entry.off_date
            else:
                logger.warning('Ignoring time off %s for provider %s with no date or range', entry.id, provider_id)
                continue
            blocked.append(BlockedInterval(
                start=start, end=end, all_day=bool(entry.all_day), local_date=local_date, freeable=True,
            ))

        return blocked


@dataclass(frozen=True)
class AvailabilityTicket:
    generation: int
    target_date: date


@dataclass
class AvailabilityRequestTracker:
    """Drops availability results that belong to a date the user already left.

    Each ``begin`` supersedes every earlier ticket; a result is only applied
    while its ticket is still the newest one.
    """

    _generation: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def begin(self, target_date: date) -> AvailabilityTicket:
        with self._lock:
            self._generation += 1
            return AvailabilityTicket(generation=self._generation, target_date=target_date)

    def is_current(self, ticket: AvailabilityTicket) -> bool:
        with self._lock:
            return ticket.generation == self._generation

    def accept(self, ticket: AvailabilityTicket, result: AvailabilityResult) -> AvailabilityResult | None:
        if not self.is_current(ticket) or result.date != ticket.target_date:
            return None
        return result
