"""
Conflict Resolution

Merges busy periods from the local appointment store and the external
calendar and filters candidate slots down to the free ones. Both sources are
hard constraints.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from booking_engine.core.timeutils import from_storage, to_storage
from booking_engine.models.appointment import STATUS_SCHEDULED, Appointment
from booking_engine.scheduling.slots import MAX_DURATION_MINUTES, CandidateSlot

SOURCE_LOCAL = 'local'
SOURCE_EXTERNAL = 'external'


@dataclass(frozen=True)
class BusyPeriod:
    start: datetime
    end: datetime
    source: str = SOURCE_LOCAL


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: touching endpoints do not conflict.
    return a_start < b_end and a_end > b_start


def find_conflicts(start: datetime, end: datetime, busy_periods: Iterable[BusyPeriod]) -> list[BusyPeriod]:
    return [period for period in busy_periods if overlaps(start, end, period.start, period.end)]


def filter_free(
    candidates: Sequence[CandidateSlot],
    local_busy: Sequence[BusyPeriod],
    external_busy: Sequence[BusyPeriod],
    limit: int | None = None,
) -> list[CandidateSlot]:
    busy_periods = [*local_busy, *external_busy]
    free_slots: list[CandidateSlot] = []

    for candidate in candidates:
        if limit is not None and len(free_slots) >= limit:
            break
        if not find_conflicts(candidate.start, candidate.end, busy_periods):
            free_slots.append(candidate)

    return free_slots


def load_local_busy(db: Session, tenant_id: str, window_start: datetime, window_end: datetime) -> list[BusyPeriod]:
    """Scheduled appointments of a tenant overlapping [window_start, window_end)."""
    # No appointment is longer than MAX_DURATION_MINUTES, so anything that
    # started earlier than that cannot reach into the window.
    lookback_start = window_start - timedelta(minutes=MAX_DURATION_MINUTES)

    rows = db.query(Appointment.start_time, Appointment.duration_minutes).filter(
        Appointment.tenant_id == tenant_id,
        Appointment.status == STATUS_SCHEDULED,
        Appointment.start_time < to_storage(window_end),
        Appointment.start_time > to_storage(lookback_start),
    ).order_by(Appointment.start_time.asc()).all()

    busy_periods: list[BusyPeriod] = []
    for start_time, duration_minutes in rows:
        start = from_storage(start_time)
        end = start + timedelta(minutes=duration_minutes)
        if overlaps(start, end, window_start, window_end):
            busy_periods.append(BusyPeriod(start=start, end=end, source=SOURCE_LOCAL))

    return busy_periods
