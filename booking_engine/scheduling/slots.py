"""
Slot Generation

Turns recurring weekly availability rules into concrete candidate start
times. Pure apart from reading the clock when ``now`` is not supplied.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo

from booking_engine.core.errors import BookingValidationError
from booking_engine.core.timeutils import get_zone, utc_now

MAX_DURATION_MINUTES = 24 * 60


class WeeklyRule(Protocol):
    day_of_week: int
    start_time: time
    end_time: time


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime


def day_of_week_index(day: date) -> int:
    """0 = Sunday ... 6 = Saturday, the convention availability rules use."""
    return (day.weekday() + 1) % 7


def validate_slot_length(duration_minutes: int, buffer_minutes: int = 0) -> None:
    if duration_minutes <= 0:
        raise BookingValidationError(f'Duration must be positive, got {duration_minutes}.')
    if duration_minutes > MAX_DURATION_MINUTES:
        raise BookingValidationError(f'Duration must be at most {MAX_DURATION_MINUTES} minutes.')
    if buffer_minutes < 0:
        raise BookingValidationError(f'Buffer cannot be negative, got {buffer_minutes}.')


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None:
        raise BookingValidationError(f'{name} must be timezone-aware.')


def iterate_local_dates(range_start: datetime, range_end: datetime, zone: ZoneInfo) -> Iterable[date]:
    current_day = range_start.astimezone(zone).date()
    last_day = (range_end - timedelta(microseconds=1)).astimezone(zone).date()

    while current_day <= last_day:
        yield current_day
        current_day += timedelta(days=1)


def generate_candidate_slots(
    rules: Iterable[WeeklyRule],
    range_start: datetime,
    range_end: datetime,
    duration_minutes: int,
    buffer_minutes: int,
    time_zone: str | ZoneInfo,
    now: datetime | None = None,
) -> list[CandidateSlot]:
    """
    Walk every rule matching each local day in [range_start, range_end).

    Each rule is walked from its start in steps of duration + buffer and a
    candidate is kept only if it ends by the rule's end, starts no earlier
    than ``now`` and starts inside the range. Output is chronological and
    candidates produced by more than one rule appear once.
    """
    validate_slot_length(duration_minutes, buffer_minutes)
    _require_aware(range_start, 'range_start')
    _require_aware(range_end, 'range_end')

    now = now or utc_now()
    zone = time_zone if isinstance(time_zone, ZoneInfo) else get_zone(time_zone)
    earliest = max(range_start, now)
    if range_end <= earliest:
        return []

    rules_by_day: dict[int, list[WeeklyRule]] = {}
    for rule in rules:
        rules_by_day.setdefault(rule.day_of_week, []).append(rule)

    slot_length = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + buffer_minutes)
    seen: set[datetime] = set()
    candidates: list[CandidateSlot] = []

    for current_day in iterate_local_dates(range_start, range_end, zone):
        for rule in rules_by_day.get(day_of_week_index(current_day), []):
            window_start = datetime.combine(current_day, rule.start_time, tzinfo=zone)
            window_end = datetime.combine(current_day, rule.end_time, tzinfo=zone)
            current_start = window_start

            while current_start + slot_length <= window_end:
                slot_start = current_start.astimezone(timezone.utc)
                if earliest <= slot_start < range_end and slot_start not in seen:
                    seen.add(slot_start)
                    candidates.append(CandidateSlot(start=slot_start, end=slot_start + slot_length))
                current_start += step

    candidates.sort(key=lambda slot: slot.start)
    return candidates
