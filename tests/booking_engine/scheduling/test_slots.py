from datetime import date, datetime, time, timezone
from types import SimpleNamespace

import pytest

from booking_engine.core.errors import BookingValidationError
from booking_engine.scheduling.slots import (
    day_of_week_index,
    generate_candidate_slots,
    iterate_local_dates,
    validate_slot_length,
)
from booking_engine.core.timeutils import get_zone
from conftest import at


def rule(day_of_week: int, start: time, end: time) -> SimpleNamespace:
    return SimpleNamespace(day_of_week=day_of_week, start_time=start, end_time=end)


MONDAY_9_TO_5 = rule(1, time(9, 0), time(17, 0))


def test_day_of_week_index_counts_from_sunday() -> None:
    assert day_of_week_index(date(2026, 1, 4)) == 0  # Sunday
    assert day_of_week_index(date(2026, 1, 5)) == 1  # Monday
    assert day_of_week_index(date(2026, 1, 10)) == 6  # Saturday


def test_monday_nine_to_five_yields_sixteen_half_hour_slots() -> None:
    slots = generate_candidate_slots(
        [MONDAY_9_TO_5],
        at(2026, 1, 5),
        at(2026, 1, 6),
        duration_minutes=30,
        buffer_minutes=0,
        time_zone='UTC',
        now=at(2026, 1, 4, 12),
    )

    assert len(slots) == 16
    assert slots[0].start == at(2026, 1, 5, 9, 0)
    assert slots[-1].start == at(2026, 1, 5, 16, 30)
    assert slots[-1].end == at(2026, 1, 5, 17, 0)


def test_slot_that_would_end_after_window_is_dropped() -> None:
    slots = generate_candidate_slots(
        [rule(1, time(9, 0), time(10, 0))],
        at(2026, 1, 5),
        at(2026, 1, 6),
        duration_minutes=45,
        buffer_minutes=0,
        time_zone='UTC',
        now=at(2026, 1, 4),
    )

    assert [slot.start for slot in slots] == [at(2026, 1, 5, 9, 0)]


def test_buffer_spaces_candidates_apart() -> None:
    slots = generate_candidate_slots(
        [rule(1, time(9, 0), time(11, 0))],
        at(2026, 1, 5),
        at(2026, 1, 6),
        duration_minutes=30,
        buffer_minutes=15,
        time_zone='UTC',
        now=at(2026, 1, 4),
    )

    assert [slot.start for slot in slots] == [
        at(2026, 1, 5, 9, 0),
        at(2026, 1, 5, 9, 45),
        at(2026, 1, 5, 10, 30),
    ]


def test_slots_before_now_are_skipped() -> None:
    slots = generate_candidate_slots(
        [MONDAY_9_TO_5],
        at(2026, 1, 5),
        at(2026, 1, 6),
        duration_minutes=30,
        buffer_minutes=0,
        time_zone='UTC',
        now=at(2026, 1, 5, 16, 10),
    )

    assert [slot.start for slot in slots] == [at(2026, 1, 5, 16, 30)]


def test_slot_starting_exactly_now_is_kept() -> None:
    slots = generate_candidate_slots(
        [MONDAY_9_TO_5],
        at(2026, 1, 5),
        at(2026, 1, 6),
        duration_minutes=30,
        buffer_minutes=0,
        time_zone='UTC',
        now=at(2026, 1, 5, 16, 30),
    )

    assert [slot.start for slot in slots] == [at(2026, 1, 5, 16, 30)]


def test_no_rules_yields_no_slots() -> None:
    assert generate_candidate_slots([], at(2026, 1, 5), at(2026, 1, 12), 30, 0, 'UTC', now=at(2026, 1, 4)) == []


def test_multiple_rules_are_merged_chronologically_without_duplicates() -> None:
    slots = generate_candidate_slots(
        [
            rule(2, time(9, 0), time(10, 0)),
            rule(1, time(13, 0), time(14, 0)),
            rule(1, time(9, 0), time(10, 0)),
            rule(1, time(9, 0), time(9, 30)),
        ],
        at(2026, 1, 5),
        at(2026, 1, 7),
        duration_minutes=30,
        buffer_minutes=0,
        time_zone='UTC',
        now=at(2026, 1, 4),
    )

    assert [slot.start for slot in slots] == [
        at(2026, 1, 5, 9, 0),
        at(2026, 1, 5, 9, 30),
        at(2026, 1, 5, 13, 0),
        at(2026, 1, 5, 13, 30),
        at(2026, 1, 6, 9, 0),
        at(2026, 1, 6, 9, 30),
    ]


def test_rules_are_read_as_tenant_wall_clock() -> None:
    slots = generate_candidate_slots(
        [rule(1, time(9, 0), time(10, 0))],
        datetime(2026, 1, 5, tzinfo=get_zone('America/New_York')),
        datetime(2026, 1, 6, tzinfo=get_zone('America/New_York')),
        duration_minutes=60,
        buffer_minutes=0,
        time_zone='America/New_York',
        now=at(2026, 1, 4),
    )

    # 09:00 EST is 14:00 UTC.
    assert [slot.start for slot in slots] == [at(2026, 1, 5, 14, 0)]
    assert slots[0].start.tzinfo == timezone.utc


def test_iterate_local_dates_excludes_day_of_exclusive_end() -> None:
    days = list(iterate_local_dates(at(2026, 1, 5), at(2026, 1, 7), get_zone('UTC')))

    assert days == [date(2026, 1, 5), date(2026, 1, 6)]


@pytest.mark.parametrize(('duration', 'buffer'), [(0, 0), (-15, 0), (24 * 60 + 1, 0), (30, -5)])
def test_validate_slot_length_rejects_bad_lengths(duration: int, buffer: int) -> None:
    with pytest.raises(BookingValidationError):
        validate_slot_length(duration, buffer)


def test_naive_range_is_rejected() -> None:
    with pytest.raises(BookingValidationError):
        generate_candidate_slots([MONDAY_9_TO_5], datetime(2026, 1, 5), at(2026, 1, 6), 30, 0, 'UTC')
