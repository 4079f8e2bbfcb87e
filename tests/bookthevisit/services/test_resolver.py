from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy.exc import OperationalError

from bookthevisit.core.errors import InvalidTimezone, ProviderNotFound, StoreUnavailable
from bookthevisit.core.timezones import ensure_utc
from bookthevisit.models.appointment import CANCELLED, Appointment
from bookthevisit.models.provider import Provider
from bookthevisit.services.resolver import (
    CLOSED,
    FULLY_BOOKED,
    OPEN,
    AvailabilityRequestTracker,
    AvailabilityResolver,
    BlockedInterval,
    Slot,
    day_of_week,
)

NEW_YORK = 'America/New_York'
MONDAY = 1
FUTURE_MONDAY = date(2030, 1, 7)
BEFORE_FUTURE_MONDAY = datetime(2029, 12, 1, 12, 0, tzinfo=timezone.utc)
MORNING_LABELS = ['9:00 AM', '9:30 AM', '10:00 AM', '10:30 AM', '11:00 AM', '11:30 AM']


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def labels(result) -> list[str]:
    return [slot.label for slot in result.slots]


@pytest.fixture
def monday_morning(add_rule):
    return add_rule(MONDAY, time(9, 0), time(12, 0), slot_interval=30)


def resolve(db, provider, target_date=FUTURE_MONDAY, now=BEFORE_FUTURE_MONDAY, **kwargs):
    return AvailabilityResolver(db).resolve(provider.id, target_date, now=now, **kwargs)


def test_day_of_week_counts_from_sunday() -> None:
    assert day_of_week(date(2030, 1, 6)) == 0
    assert day_of_week(FUTURE_MONDAY) == 1
    assert day_of_week(date(2030, 1, 12)) == 6


def test_weekly_rule_generates_slots_up_to_but_excluding_end(db, provider, monday_morning) -> None:
    result = resolve(db, provider)

    assert result.status == OPEN
    assert labels(result) == MORNING_LABELS
    assert len(result.slots) == 6
    assert '12:00 PM' not in labels(result)


def test_slots_expose_utc_instants(db, provider, monday_morning) -> None:
    result = resolve(db, provider)

    assert result.slots[0].start == utc(2030, 1, 7, 14, 0)
    assert result.slots[0].local_start == datetime(2030, 1, 7, 9, 0)
    assert [slot.start for slot in result.slots] == sorted(slot.start for slot in result.slots)


def test_timezone_is_read_from_provider_when_not_given(db, provider, monday_morning) -> None:
    result = AvailabilityResolver(db).resolve(provider.id, FUTURE_MONDAY, now=BEFORE_FUTURE_MONDAY)

    assert result.timezone == NEW_YORK


def test_booked_appointment_removes_only_its_start(db, provider, monday_morning, add_appointment) -> None:
    add_appointment(utc(2030, 1, 7, 15, 0), utc(2030, 1, 7, 15, 30))

    result = resolve(db, provider)

    assert labels(result) == ['9:00 AM', '9:30 AM', '10:30 AM', '11:00 AM', '11:30 AM']


def test_blocked_interval_is_half_open(db, provider, monday_morning, add_appointment) -> None:
    # 9:30-10:30 local blocks 9:30 and 10:00, leaves 10:30.
    add_appointment(utc(2030, 1, 7, 14, 30), utc(2030, 1, 7, 15, 30))

    result = resolve(db, provider)

    assert '9:30 AM' not in labels(result)
    assert '10:00 AM' not in labels(result)
    assert '10:30 AM' in labels(result)
    assert '9:00 AM' in labels(result)


def test_cancelled_appointments_do_not_block(db, provider, monday_morning, add_appointment) -> None:
    add_appointment(utc(2030, 1, 7, 15, 0), utc(2030, 1, 7, 15, 30), status=CANCELLED)

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_excluded_appointment_does_not_block_its_own_reschedule(db, provider, monday_morning, add_appointment) -> None:
    appointment = add_appointment(utc(2030, 1, 7, 15, 0), utc(2030, 1, 7, 15, 30))

    result = resolve(db, provider, exclude_appointment_id=appointment.id)

    assert '10:00 AM' in labels(result)


def test_other_providers_bookings_are_ignored(db, provider, monday_morning) -> None:
    other = Provider(subdomain='jones', office_name='Jones PT', timezone=NEW_YORK)
    db.add(other)
    db.commit()
    db.add(Appointment(provider_id=other.id, start_time=utc(2030, 1, 7, 15, 0), end_time=utc(2030, 1, 7, 15, 30)))
    db.commit()

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_no_slot_ever_falls_inside_a_booked_interval(db, provider, add_rule, add_appointment) -> None:
    add_rule(MONDAY, time(8, 0), time(17, 0), slot_interval=15)
    booked = [
        add_appointment(utc(2030, 1, 7, 13, 10), utc(2030, 1, 7, 14, 5)),
        add_appointment(utc(2030, 1, 7, 17, 0), utc(2030, 1, 7, 18, 0)),
        add_appointment(utc(2030, 1, 7, 20, 45), utc(2030, 1, 7, 21, 15)),
    ]

    result = resolve(db, provider)

    for slot in result.slots:
        for appointment in booked:
            start = ensure_utc(appointment.start_time)
            end = ensure_utc(appointment.end_time)
            assert not start <= slot.start < end


def test_resolution_is_idempotent(db, provider, monday_morning, add_appointment) -> None:
    add_appointment(utc(2030, 1, 7, 15, 0), utc(2030, 1, 7, 15, 30))

    assert resolve(db, provider).slots == resolve(db, provider).slots


def test_overlapping_rules_do_not_duplicate_slots(db, provider, add_rule) -> None:
    add_rule(MONDAY, time(9, 0), time(11, 0))
    add_rule(MONDAY, time(10, 0), time(12, 0))

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_split_day_rules_merge_in_time_order(db, provider, add_rule) -> None:
    add_rule(MONDAY, time(14, 0), time(15, 0), slot_interval=20)
    add_rule(MONDAY, time(9, 0), time(10, 0))

    assert labels(resolve(db, provider)) == ['9:00 AM', '9:30 AM', '2:00 PM', '2:20 PM', '2:40 PM']


def test_inactive_rules_are_ignored(db, provider, add_rule) -> None:
    add_rule(MONDAY, time(9, 0), time(12, 0), is_active=False)

    result = resolve(db, provider)

    assert result.status == CLOSED
    assert not result.is_available
    assert result.slots == ()


def test_day_without_rules_is_closed(db, provider, monday_morning) -> None:
    result = resolve(db, provider, target_date=date(2030, 1, 8))

    assert result.status == CLOSED
    assert result.message == 'No available times on this date.'


def test_all_day_time_off_closes_the_date(db, provider, monday_morning, add_time_off, add_override) -> None:
    add_time_off(off_date=FUTURE_MONDAY, all_day=True, reason='holiday:mlk_day')
    add_override(utc(2030, 1, 7, 18, 0), utc(2030, 1, 7, 20, 0))

    result = resolve(db, provider)

    assert result.status == CLOSED
    assert result.slots == ()


def test_all_day_time_off_by_instant_span_closes_the_date(db, provider, monday_morning, add_time_off) -> None:
    add_time_off(start=utc(2030, 1, 7, 5, 0), end=utc(2030, 1, 8, 4, 59), all_day=True)

    assert resolve(db, provider).status == CLOSED


def test_all_day_time_off_on_another_date_is_ignored(db, provider, monday_morning, add_time_off) -> None:
    add_time_off(off_date=date(2030, 1, 8), all_day=True)

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_partial_time_off_blocks_overlapping_slots(db, provider, monday_morning, add_time_off) -> None:
    add_time_off(start=utc(2030, 1, 7, 16, 0), end=utc(2030, 1, 7, 17, 0), reason='lunch meeting')

    assert labels(resolve(db, provider)) == ['9:00 AM', '9:30 AM', '10:00 AM', '10:30 AM']


def test_legacy_full_day_range_without_all_day_flag_blocks_every_slot(db, provider, monday_morning, add_time_off) -> None:
    add_time_off(start=utc(2030, 1, 7, 5, 0), end=utc(2030, 1, 8, 4, 59), reason='every_other_saturday')

    result = resolve(db, provider)

    assert result.status == FULLY_BOOKED


def test_override_opens_slots_on_a_day_without_rules(db, provider, add_override) -> None:
    add_override(utc(2030, 1, 8, 18, 0), utc(2030, 1, 8, 20, 0))

    result = resolve(db, provider, target_date=date(2030, 1, 8))

    assert result.status == OPEN
    assert labels(result) == ['1:00 PM', '1:30 PM', '2:00 PM', '2:30 PM']


def test_override_slots_interleave_with_rule_slots(db, provider, add_rule, add_override) -> None:
    add_rule(MONDAY, time(9, 0), time(10, 0), slot_interval=20)
    add_override(utc(2030, 1, 7, 14, 30), utc(2030, 1, 7, 15, 30))

    result = resolve(db, provider)

    assert labels(result) == ['9:00 AM', '9:20 AM', '9:30 AM', '9:40 AM', '10:00 AM']


def test_override_frees_fully_enclosed_partial_time_off(db, provider, monday_morning, add_time_off, add_override) -> None:
    add_time_off(start=utc(2030, 1, 7, 15, 0), end=utc(2030, 1, 7, 16, 0))
    add_override(utc(2030, 1, 7, 14, 30), utc(2030, 1, 7, 16, 30))

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_override_never_frees_a_booked_appointment(db, provider, monday_morning, add_appointment, add_override) -> None:
    add_appointment(utc(2030, 1, 7, 15, 0), utc(2030, 1, 7, 15, 30))
    add_override(utc(2030, 1, 7, 14, 0), utc(2030, 1, 7, 17, 0))

    result = resolve(db, provider)

    assert labels(result) == ['9:00 AM', '9:30 AM', '10:30 AM', '11:00 AM', '11:30 AM']


def test_override_does_not_free_partially_overlapping_block(db, provider, monday_morning, add_time_off, add_override) -> None:
    add_time_off(start=utc(2030, 1, 7, 15, 0), end=utc(2030, 1, 7, 16, 0))
    add_override(utc(2030, 1, 7, 15, 30), utc(2030, 1, 7, 16, 30))

    result = resolve(db, provider)

    assert '10:00 AM' not in labels(result)
    assert '10:30 AM' not in labels(result)


def test_inactive_or_other_day_overrides_are_ignored(db, provider, monday_morning, add_override) -> None:
    add_override(utc(2030, 1, 7, 18, 0), utc(2030, 1, 7, 19, 0), is_active=False)
    add_override(utc(2030, 1, 9, 18, 0), utc(2030, 1, 9, 19, 0))

    assert labels(resolve(db, provider)) == MORNING_LABELS


def test_today_only_offers_future_slots(db, provider, monday_morning) -> None:
    now = utc(2030, 1, 7, 15, 10)  # 10:10 AM local

    result = resolve(db, provider, now=now)

    assert labels(result) == ['10:30 AM', '11:00 AM', '11:30 AM']


def test_slot_starting_exactly_now_is_dropped(db, provider, monday_morning) -> None:
    result = resolve(db, provider, now=utc(2030, 1, 7, 15, 0))

    assert labels(result)[0] == '10:30 AM'


def test_today_after_hours_is_fully_booked_sentinel(db, provider, monday_morning) -> None:
    result = resolve(db, provider, now=utc(2030, 1, 7, 18, 0))

    assert result.status == FULLY_BOOKED
    assert not result.is_available


def test_fully_booked_day_returns_sentinel(db, provider, add_rule, add_appointment) -> None:
    add_rule(MONDAY, time(9, 0), time(10, 0))
    add_appointment(utc(2030, 1, 7, 14, 0), utc(2030, 1, 7, 15, 0))

    result = resolve(db, provider)

    assert result.status == FULLY_BOOKED
    assert result.slots == ()
    assert result.message == 'No available times on this date.'


def test_dst_start_day_uses_new_offset_after_transition(db, provider, add_rule) -> None:
    add_rule(0, time(9, 0), time(10, 0))  # Sunday

    result = resolve(db, provider, target_date=date(2030, 3, 10))

    assert [slot.start for slot in result.slots] == [utc(2030, 3, 10, 13, 0), utc(2030, 3, 10, 13, 30)]


def test_find_slot_matches_utc_instant(db, provider, monday_morning) -> None:
    result = resolve(db, provider)

    assert result.find_slot(utc(2030, 1, 7, 14, 30)).label == '9:30 AM'
    assert result.find_slot(datetime(2030, 1, 7, 14, 30)).label == '9:30 AM'
    assert result.find_slot(utc(2030, 1, 7, 14, 45)) is None


def test_unknown_provider_raises(db) -> None:
    with pytest.raises(ProviderNotFound):
        AvailabilityResolver(db).resolve(999, FUTURE_MONDAY)


def test_invalid_provider_timezone_raises(db, provider, monday_morning) -> None:
    provider.timezone = 'Not/AZone'
    db.commit()

    with pytest.raises(InvalidTimezone):
        AvailabilityResolver(db).resolve(provider.id, FUTURE_MONDAY)


def test_store_failure_is_not_reported_as_closed(db, provider, monday_morning, monkeypatch: pytest.MonkeyPatch) -> None:
    resolver = AvailabilityResolver(db)

    def broken_query(*args, **kwargs):
        raise OperationalError('SELECT', {}, Exception('connection refused'))

    monkeypatch.setattr(db, 'query', broken_query)

    with pytest.raises(StoreUnavailable):
        resolver.resolve(provider.id, FUTURE_MONDAY, NEW_YORK)


def test_resolver_requires_a_session_or_store() -> None:
    with pytest.raises(ValueError):
        AvailabilityResolver()


def test_all_day_blocked_interval_matches_by_local_date() -> None:
    interval = BlockedInterval(
        start=utc(2030, 1, 7, 5, 0), end=utc(2030, 1, 8, 5, 0), all_day=True, local_date=FUTURE_MONDAY
    )
    same_day = Slot(start=utc(2030, 1, 8, 4, 30), local_start=datetime(2030, 1, 7, 23, 30), label='11:30 PM')
    next_day = Slot(start=utc(2030, 1, 8, 5, 0), local_start=datetime(2030, 1, 8, 0, 0), label='12:00 AM')

    assert interval.blocks(same_day)
    assert not interval.blocks(next_day)


def test_request_tracker_discards_superseded_results(db, provider, monday_morning) -> None:
    tracker = AvailabilityRequestTracker()
    resolver = AvailabilityResolver(db)

    first = tracker.begin(FUTURE_MONDAY)
    second = tracker.begin(date(2030, 1, 14))

    stale = resolver.resolve(provider.id, FUTURE_MONDAY, now=BEFORE_FUTURE_MONDAY)
    fresh = resolver.resolve(provider.id, date(2030, 1, 14), now=BEFORE_FUTURE_MONDAY)

    assert not tracker.is_current(first)
    assert tracker.accept(first, stale) is None
    assert tracker.accept(second, fresh) is fresh
    assert tracker.accept(second, stale) is None
