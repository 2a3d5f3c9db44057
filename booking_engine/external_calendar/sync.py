"""
Calendar Sync Outbox

External calendar writes that could not be made inline (event creation that
failed during booking, event retraction on cancel, cleanup of an event left
behind by a booking that lost its slot) are persisted as CalendarSyncTask
rows and retried here.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import UpstreamWriteFailure
from booking_engine.core.timeutils import from_storage
from booking_engine.external_calendar.google import GoogleCalendarGateway
from booking_engine.models.appointment import (
    STATUS_SCHEDULED,
    SYNC_FAILED,
    SYNC_RETRACTED,
    SYNC_SYNCED,
    Appointment,
)
from booking_engine.models.external_calendar import (
    SYNC_ACTION_CREATE_EVENT,
    SYNC_ACTION_DELETE_EVENT,
    TASK_DONE,
    TASK_FAILED,
    TASK_PENDING,
    CalendarSyncTask,
)
from booking_engine.models.tenant import Tenant
from booking_engine.scheduling.narration import event_description, event_title

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    done: list[int] = field(default_factory=list)
    retrying: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def enqueue_event_creation(db: Session, appointment: Appointment) -> CalendarSyncTask:
    task = CalendarSyncTask(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        action=SYNC_ACTION_CREATE_EVENT,
        status=TASK_PENDING,
        attempts=0,
    )
    db.add(task)
    return task


def enqueue_event_deletion(
    db: Session,
    tenant_id: str,
    event_id: str,
    appointment_id: int | None = None,
) -> CalendarSyncTask:
    task = CalendarSyncTask(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        action=SYNC_ACTION_DELETE_EVENT,
        external_event_id=event_id,
        status=TASK_PENDING,
        attempts=0,
    )
    db.add(task)
    return task


def _create_event_for(db: Session, gateway: GoogleCalendarGateway, task: CalendarSyncTask) -> None:
    appointment = db.get(Appointment, task.appointment_id) if task.appointment_id else None

    # Nothing to create for an appointment that is gone, canceled or already synced.
    if appointment is None or appointment.status != STATUS_SCHEDULED or appointment.external_event_id:
        return

    tenant = db.get(Tenant, appointment.tenant_id)
    start = from_storage(appointment.start_time)
    event_ref = gateway.create_event(
        db,
        appointment.tenant_id,
        title=event_title(appointment),
        description=event_description(appointment),
        start=start,
        end=start + timedelta(minutes=appointment.duration_minutes),
        attendee_email=appointment.caller_email,
        time_zone=tenant.timezone if tenant else None,
    )
    appointment.external_event_id = event_ref.event_id
    appointment.external_sync_status = SYNC_SYNCED


def _delete_event_for(db: Session, gateway: GoogleCalendarGateway, task: CalendarSyncTask) -> None:
    gateway.delete_event(db, task.tenant_id, task.external_event_id)

    appointment = db.get(Appointment, task.appointment_id) if task.appointment_id else None
    if appointment is not None:
        appointment.external_sync_status = SYNC_RETRACTED


def attempt_task(db: Session, gateway: GoogleCalendarGateway, task: CalendarSyncTask) -> bool:
    """Run one outbox task. Returns True when it is finished."""
    handlers = {
        SYNC_ACTION_CREATE_EVENT: _create_event_for,
        SYNC_ACTION_DELETE_EVENT: _delete_event_for,
    }
    handler = handlers.get(task.action)
    if handler is None:
        logger.error('Unknown calendar sync action %r on task %s.', task.action, task.id)
        task.status = TASK_FAILED
        task.last_error = f'Unknown action {task.action}'
        db.commit()
        return False

    try:
        handler(db, gateway, task)
    except UpstreamWriteFailure as exc:
        task.attempts += 1
        task.last_error = str(exc)
        if task.attempts >= config.CALENDAR_SYNC_MAX_ATTEMPTS:
            task.status = TASK_FAILED
            appointment = db.get(Appointment, task.appointment_id) if task.appointment_id else None
            if appointment is not None:
                appointment.external_sync_status = SYNC_FAILED
            logger.error(
                'Calendar sync task %s (%s) gave up after %s attempts: %s',
                task.id,
                task.action,
                task.attempts,
                exc,
            )
        else:
            logger.warning('Calendar sync task %s (%s) failed, will retry: %s', task.id, task.action, exc)
        db.commit()
        return False

    task.attempts += 1
    task.status = TASK_DONE
    task.last_error = None
    db.commit()
    return True


def process_pending_tasks(
    db: Session,
    gateway: GoogleCalendarGateway,
    tenant_id: str | None = None,
    limit: int = 50,
) -> SyncReport:
    query = db.query(CalendarSyncTask).filter(CalendarSyncTask.status == TASK_PENDING)
    if tenant_id is not None:
        query = query.filter(CalendarSyncTask.tenant_id == tenant_id)
    tasks = query.order_by(CalendarSyncTask.id.asc()).limit(limit).all()

    report = SyncReport()
    for task in tasks:
        if attempt_task(db, gateway, task):
            report.done.append(task.id)
        elif task.status == TASK_FAILED:
            report.failed.append(task.id)
        else:
            report.retrying.append(task.id)

    if tasks:
        logger.info(
            'Calendar sync: %s done, %s retrying, %s failed.',
            len(report.done),
            len(report.retrying),
            len(report.failed),
        )
    return report
