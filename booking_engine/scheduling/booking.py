"""
Booking Transaction

There is no transaction spanning the external calendar and the local store,
so booking is ordered: validate, re-check conflicts against both sources,
create the calendar event (best effort), then insert the appointment together
with its slot claims. The unique slot claims make the store the final arbiter
of one booking per slot; the pre-commit re-check only narrows the race.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.errors import (
    AppointmentNotFound,
    BookingValidationError,
    SlotConflictError,
    StoreFailure,
    UpstreamDegraded,
    UpstreamWriteFailure,
)
from booking_engine.core.timeutils import to_storage, utc_now
from booking_engine.external_calendar import sync
from booking_engine.external_calendar.google import EventRef, GoogleCalendarGateway
from booking_engine.models.appointment import (
    APPOINTMENT_TYPES,
    BOOKED_BY_CLIENT,
    BOOKED_BY_VOICE_AGENT,
    STATUS_CANCELED,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    SYNC_NOT_CONNECTED,
    SYNC_PENDING,
    SYNC_SYNCED,
    Appointment,
    AppointmentSlotClaim,
)
from booking_engine.models.tenant import Tenant
from booking_engine.scheduling import narration
from booking_engine.scheduling.conflicts import find_conflicts, load_local_busy
from booking_engine.scheduling.slots import validate_slot_length

logger = logging.getLogger(__name__)

CLAIM_BUCKET = timedelta(minutes=1)


@dataclass(frozen=True)
class Attribution:
    booked_by: str = BOOKED_BY_CLIENT
    caller_name: str | None = None
    caller_phone: str | None = None
    caller_email: str | None = None
    appointment_type: str = 'phone'
    notes: str | None = None
    call_id: str | None = None


def is_whole_minute(value: datetime) -> bool:
    return value.second == 0 and value.microsecond == 0


def iterate_claim_buckets(start_time: datetime, end_time: datetime) -> list[datetime]:
    """Every one-minute claim bucket (naive UTC) covered by [start_time, end_time).

    Both ends must fall on whole minutes. Then two intervals share a bucket
    exactly when they overlap, and intervals that only touch share none.
    """
    if not is_whole_minute(start_time) or not is_whole_minute(end_time):
        raise BookingValidationError('Appointment boundaries must fall on whole minutes.')

    current = start_time
    buckets: list[datetime] = []

    while current < end_time:
        buckets.append(current)
        current += CLAIM_BUCKET

    return buckets


def validate_booking_request(
    tenant: Tenant,
    slot_start: datetime,
    duration_minutes: int,
    attribution: Attribution,
    now: datetime,
) -> None:
    if slot_start.tzinfo is None:
        raise BookingValidationError(
            'Booking time must include a timezone offset.',
            narration=narration.UNPARSEABLE_DATETIME,
        )
    validate_slot_length(duration_minutes)
    if not is_whole_minute(slot_start):
        raise BookingValidationError(
            f'Booking time {slot_start.isoformat()} must start on a whole minute.',
            narration='Appointments start on the minute. Could you pick one of the offered times?',
        )

    if slot_start < now:
        raise BookingValidationError(
            f'Booking time {slot_start.isoformat()} is in the past.',
            narration=narration.PAST_DATETIME,
        )

    if slot_start > now + timedelta(days=tenant.max_advance_days):
        raise BookingValidationError(
            f'Booking time is more than {tenant.max_advance_days} days ahead.',
            narration=f'Appointments can only be booked within the next {tenant.max_advance_days} days. '
                      'Would you like to pick an earlier time?',
        )

    if attribution.appointment_type not in APPOINTMENT_TYPES:
        raise BookingValidationError(f'Invalid appointment type {attribution.appointment_type!r}.')

    if attribution.booked_by == BOOKED_BY_VOICE_AGENT and not tenant.can_book_meetings:
        raise BookingValidationError(
            f'Tenant {tenant.id} does not accept voice-agent bookings.',
            narration=narration.BOOKING_DISABLED,
        )


def _recheck_slot(
    db: Session,
    tenant: Tenant,
    slot_start: datetime,
    slot_end: datetime,
    gateway: GoogleCalendarGateway,
) -> None:
    try:
        external_busy = gateway.query_busy(db, tenant.id, slot_start, slot_end)
    except UpstreamDegraded as exc:
        logger.warning('Calendar unreachable while re-checking tenant %s, checking locally only: %s', tenant.id, exc)
        external_busy = []

    if external_busy:
        raise SlotConflictError(
            f'{slot_start.isoformat()} is busy on the external calendar for tenant {tenant.id}.',
            narration='It looks like that time slot was just taken. '
                      'Would you like to check availability again for another time?',
        )

    local_busy = load_local_busy(db, tenant.id, slot_start, slot_end)
    if find_conflicts(slot_start, slot_end, local_busy):
        raise SlotConflictError(f'{slot_start.isoformat()} is already booked for tenant {tenant.id}.')


def _queue_orphan_cleanup(db: Session, tenant_id: str, event_ref: EventRef) -> None:
    try:
        sync.enqueue_event_deletion(db, tenant_id, event_ref.event_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            'Could not queue cleanup of orphaned calendar event %s for tenant %s.',
            event_ref.event_id,
            tenant_id,
        )


def book(
    db: Session,
    tenant: Tenant,
    slot_start: datetime,
    duration_minutes: int,
    attribution: Attribution,
    gateway: GoogleCalendarGateway,
    now: datetime | None = None,
) -> Appointment:
    now = now or utc_now()
    validate_booking_request(tenant, slot_start, duration_minutes, attribution, now)

    slot_end = slot_start + timedelta(minutes=duration_minutes)
    _recheck_slot(db, tenant, slot_start, slot_end, gateway)

    appointment = Appointment(
        tenant_id=tenant.id,
        start_time=to_storage(slot_start),
        duration_minutes=duration_minutes,
        appointment_type=attribution.appointment_type,
        status=STATUS_SCHEDULED,
        booked_by=attribution.booked_by,
        caller_name=attribution.caller_name,
        caller_phone=attribution.caller_phone,
        caller_email=attribution.caller_email,
        notes=attribution.notes,
        call_id=attribution.call_id,
        external_sync_status=SYNC_NOT_CONNECTED,
    )

    event_ref = None
    if gateway.is_connected(db, tenant.id):
        try:
            event_ref = gateway.create_event(
                db,
                tenant.id,
                title=narration.event_title(appointment),
                description=narration.event_description(appointment),
                start=slot_start,
                end=slot_end,
                attendee_email=attribution.caller_email,
                time_zone=tenant.timezone,
            )
            appointment.external_event_id = event_ref.event_id
            appointment.external_sync_status = SYNC_SYNCED
        except UpstreamWriteFailure as exc:
            logger.warning(
                'Calendar event creation failed for tenant %s at %s; booking locally and queueing sync: %s',
                tenant.id,
                slot_start.isoformat(),
                exc,
            )
            appointment.external_sync_status = SYNC_PENDING

    appointment.claims = [
        AppointmentSlotClaim(tenant_id=tenant.id, bucket_start=bucket)
        for bucket in iterate_claim_buckets(appointment.start_time, to_storage(slot_end))
    ]

    try:
        db.add(appointment)
        db.flush()
        if appointment.external_sync_status == SYNC_PENDING:
            sync.enqueue_event_creation(db, appointment)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info('Slot %s for tenant %s lost the race to another booking.', slot_start.isoformat(), tenant.id)
        if event_ref is not None:
            _queue_orphan_cleanup(db, tenant.id, event_ref)
        raise SlotConflictError(f'{slot_start.isoformat()} was booked concurrently for tenant {tenant.id}.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            'Appointment insert failed for tenant %s at %s; orphaned calendar event: %s',
            tenant.id,
            slot_start.isoformat(),
            event_ref.event_id if event_ref else None,
        )
        raise StoreFailure(f'Appointment insert failed for tenant {tenant.id}.') from exc

    db.refresh(appointment)
    logger.info(
        'Booked appointment %s for tenant %s at %s (%s, by %s).',
        appointment.id,
        tenant.id,
        slot_start.isoformat(),
        appointment.external_sync_status,
        appointment.booked_by,
    )
    return appointment


def get_appointment(db: Session, tenant_id: str, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.tenant_id == tenant_id,
    ).first()
    if appointment is None:
        raise AppointmentNotFound(f'Appointment {appointment_id} not found for tenant {tenant_id}.')
    return appointment


def cancel(
    db: Session,
    tenant_id: str,
    appointment_id: int,
    gateway: GoogleCalendarGateway | None = None,
) -> Appointment:
    """Cancel, release the slot and retract the calendar event.

    Retraction goes through the outbox; when a gateway is given it is also
    attempted right away.
    """
    appointment = get_appointment(db, tenant_id, appointment_id)

    if appointment.status == STATUS_CANCELED:
        return appointment
    if appointment.status == STATUS_COMPLETED:
        raise BookingValidationError(
            f'Appointment {appointment_id} is completed and cannot be canceled.',
            narration='That appointment has already taken place.',
        )

    task = None
    try:
        appointment.status = STATUS_CANCELED
        appointment.claims.clear()
        if appointment.external_event_id:
            task = sync.enqueue_event_deletion(db, tenant_id, appointment.external_event_id, appointment.id)
            appointment.external_sync_status = SYNC_PENDING
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreFailure(f'Cancel of appointment {appointment_id} failed.') from exc

    logger.info('Canceled appointment %s for tenant %s.', appointment_id, tenant_id)

    if task is not None and gateway is not None:
        sync.attempt_task(db, gateway, task)

    db.refresh(appointment)
    return appointment


def complete(db: Session, tenant_id: str, appointment_id: int) -> Appointment:
    appointment = get_appointment(db, tenant_id, appointment_id)

    if appointment.status == STATUS_COMPLETED:
        return appointment
    if appointment.status != STATUS_SCHEDULED:
        raise BookingValidationError(
            f'Appointment {appointment_id} is {appointment.status} and cannot be completed.',
            narration='Only scheduled appointments can be marked completed.',
        )

    try:
        appointment.status = STATUS_COMPLETED
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreFailure(f'Completing appointment {appointment_id} failed.') from exc

    db.refresh(appointment)
    return appointment
