"""
Scheduling Facade

The two entry points every caller uses, whether a person on the web client,
an admin or the voice agent mid-call: list available slots and book a slot.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import BookingValidationError, TenantNotFound, UpstreamDegraded
from booking_engine.core.timeutils import get_zone, utc_now
from booking_engine.external_calendar.google import GoogleCalendarGateway
from booking_engine.models.appointment import Appointment
from booking_engine.models.tenant import Tenant
from booking_engine.scheduling import booking, narration
from booking_engine.scheduling.availability import load_rules
from booking_engine.scheduling.conflicts import filter_free, load_local_busy
from booking_engine.scheduling.slots import CandidateSlot, generate_candidate_slots

logger = logging.getLogger(__name__)

CALENDAR_CONNECTED = 'connected'
CALENDAR_DISCONNECTED = 'disconnected'
CALENDAR_UNREACHABLE = 'unreachable'


@dataclass
class SlotListing:
    slots: list[CandidateSlot] = field(default_factory=list)
    calendar_status: str = CALENDAR_DISCONNECTED
    has_rules: bool = True
    days_ahead: int = 0


def resolve_tenant(db: Session, tenant_ref: str) -> Tenant:
    tenant = db.get(Tenant, (tenant_ref or '').strip())
    if tenant is None:
        raise TenantNotFound(f'Unknown tenant {tenant_ref!r}.')
    return tenant


def resolve_tenant_by_agent(db: Session, agent_id: str | None) -> Tenant:
    if not agent_id:
        raise TenantNotFound('Missing agent_id.')
    tenant = db.query(Tenant).filter(Tenant.voice_agent_id == agent_id).first()
    if tenant is None:
        raise TenantNotFound(f'No tenant is mapped to voice agent {agent_id!r}.')
    return tenant


def resolve_range_start(requested: str | None, tenant: Tenant, now: datetime | None = None) -> datetime:
    """Start of the listing window for a loosely specified date.

    Accepts YYYY-MM-DD, an ISO datetime, "today" or "tomorrow". Anything
    else, or a day that has already started, starts the window at now.
    """
    now = now or utc_now()
    zone = get_zone(tenant.timezone)
    today = now.astimezone(zone).date()
    raw = (requested or '').strip()
    value = raw.lower()

    requested_day: date | None
    if not value or value == 'today':
        requested_day = today
    elif value == 'tomorrow':
        requested_day = today + timedelta(days=1)
    else:
        try:
            requested_day = datetime.fromisoformat(raw.replace('Z', '+00:00')).date()
        except ValueError:
            logger.info('Could not parse requested date %r for tenant %s; using now.', requested, tenant.id)
            requested_day = today

    return max(now, datetime.combine(requested_day, time.min, tzinfo=zone))


def clamp_days_ahead(days_ahead: int | None, tenant: Tenant) -> int:
    days = days_ahead or config.DEFAULT_DAYS_AHEAD
    return max(1, min(days, tenant.max_advance_days))


def list_available_slots(
    db: Session,
    tenant: Tenant,
    range_start: datetime,
    range_days: int,
    gateway: GoogleCalendarGateway,
    now: datetime | None = None,
    limit: int | None = config.MAX_SLOTS_RETURNED,
    duration_minutes: int | None = None,
) -> SlotListing:
    if range_days <= 0:
        raise BookingValidationError(f'range_days must be positive, got {range_days}.')
    if range_start.tzinfo is None:
        raise BookingValidationError('range_start must be timezone-aware.')

    now = now or utc_now()
    zone = get_zone(tenant.timezone)
    rules = load_rules(db, tenant.id)
    if not rules:
        return SlotListing(has_rules=False, days_ahead=range_days)

    first_day = range_start.astimezone(zone).date()
    range_end = datetime.combine(first_day + timedelta(days=range_days), time.min, tzinfo=zone)
    # Never offer a start past the booking horizon.
    range_end = min(range_end, now + timedelta(days=tenant.max_advance_days))
    window_start = max(range_start, now)

    candidates = generate_candidate_slots(
        rules,
        window_start,
        range_end,
        duration_minutes if duration_minutes is not None else tenant.default_meeting_duration,
        tenant.buffer_minutes,
        zone,
        now=now,
    )

    calendar_status = CALENDAR_DISCONNECTED
    external_busy = []
    try:
        credential = gateway.get_valid_credential(db, tenant.id)
        if credential is not None:
            calendar_status = CALENDAR_CONNECTED
            if candidates:
                external_busy = gateway.query_busy(db, tenant.id, window_start, range_end, credential=credential)
    except UpstreamDegraded as exc:
        logger.warning('Calendar unreachable for tenant %s, listing from local appointments only: %s', tenant.id, exc)
        calendar_status = CALENDAR_UNREACHABLE

    if not candidates:
        return SlotListing(calendar_status=calendar_status, days_ahead=range_days)

    local_busy = load_local_busy(db, tenant.id, window_start, range_end)
    slots = filter_free(candidates, local_busy, external_busy, limit=limit)
    return SlotListing(slots=slots, calendar_status=calendar_status, days_ahead=range_days)


def book_slot(
    db: Session,
    tenant: Tenant,
    chosen_start: datetime,
    duration_minutes: int | None,
    attribution: booking.Attribution,
    gateway: GoogleCalendarGateway,
    now: datetime | None = None,
) -> Appointment:
    return booking.book(
        db,
        tenant,
        chosen_start,
        duration_minutes if duration_minutes is not None else tenant.default_meeting_duration,
        attribution,
        gateway,
        now=now,
    )


def parse_requested_datetime(value: str | None, tenant: Tenant) -> datetime:
    """Parse a caller-chosen ISO 8601 start. Naive values are tenant wall clock."""
    if not value or not value.strip():
        raise BookingValidationError('Missing booking datetime.', narration=narration.MISSING_DATETIME)

    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError as exc:
        raise BookingValidationError(
            f'Unparseable booking datetime {value!r}.',
            narration=narration.UNPARSEABLE_DATETIME,
        ) from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=get_zone(tenant.timezone))
    return parsed
