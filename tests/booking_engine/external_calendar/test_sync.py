from datetime import datetime

from booking_engine.core import config
from booking_engine.external_calendar import sync
from booking_engine.models.appointment import (
    STATUS_CANCELED,
    STATUS_SCHEDULED,
    SYNC_FAILED,
    SYNC_PENDING,
    SYNC_RETRACTED,
    SYNC_SYNCED,
    Appointment,
)
from booking_engine.models.external_calendar import (
    SYNC_ACTION_CREATE_EVENT,
    TASK_DONE,
    TASK_FAILED,
    TASK_PENDING,
    CalendarSyncTask,
)
from conftest import FakeGateway


def pending_appointment(db, tenant, status=STATUS_SCHEDULED) -> Appointment:
    appointment = Appointment(
        tenant_id=tenant.id,
        start_time=datetime(2026, 1, 5, 10, 0),
        duration_minutes=30,
        status=status,
        caller_name='Jane Doe',
        external_sync_status=SYNC_PENDING,
    )
    db.add(appointment)
    db.flush()
    sync.enqueue_event_creation(db, appointment)
    db.commit()
    return appointment


def test_pending_creation_is_retried_until_it_succeeds(db, tenant) -> None:
    appointment = pending_appointment(db, tenant)
    gateway = FakeGateway(fail_writes=True)

    first = sync.process_pending_tasks(db, gateway)

    assert first.retrying and not first.done
    task = db.query(CalendarSyncTask).one()
    assert task.attempts == 1
    assert task.status == TASK_PENDING
    assert task.last_error == 'calendar write failed'

    gateway.fail_writes = False
    second = sync.process_pending_tasks(db, gateway)

    assert second.done == [task.id]
    db.refresh(appointment)
    assert appointment.external_event_id == 'evt_1'
    assert appointment.external_sync_status == SYNC_SYNCED
    assert db.query(CalendarSyncTask).one().status == TASK_DONE


def test_task_gives_up_after_max_attempts(db, tenant, monkeypatch) -> None:
    monkeypatch.setattr(config, 'CALENDAR_SYNC_MAX_ATTEMPTS', 2)
    appointment = pending_appointment(db, tenant)
    gateway = FakeGateway(fail_writes=True)

    sync.process_pending_tasks(db, gateway)
    report = sync.process_pending_tasks(db, gateway)

    task = db.query(CalendarSyncTask).one()
    assert report.failed == [task.id]
    assert task.status == TASK_FAILED
    db.refresh(appointment)
    assert appointment.external_sync_status == SYNC_FAILED

    assert sync.process_pending_tasks(db, gateway).done == []


def test_creation_for_canceled_appointment_is_skipped(db, tenant, gateway) -> None:
    pending_appointment(db, tenant, status=STATUS_CANCELED)

    report = sync.process_pending_tasks(db, gateway)

    assert len(report.done) == 1
    assert gateway.created == []


def test_deletion_task_retracts_event(db, tenant, gateway) -> None:
    appointment = Appointment(
        tenant_id=tenant.id,
        start_time=datetime(2026, 1, 5, 10, 0),
        duration_minutes=30,
        status=STATUS_CANCELED,
        external_event_id='evt_9',
        external_sync_status=SYNC_PENDING,
    )
    db.add(appointment)
    db.flush()
    sync.enqueue_event_deletion(db, tenant.id, 'evt_9', appointment.id)
    db.commit()

    report = sync.process_pending_tasks(db, gateway)

    assert len(report.done) == 1
    assert gateway.deleted == ['evt_9']
    db.refresh(appointment)
    assert appointment.external_sync_status == SYNC_RETRACTED


def test_processing_can_be_limited_to_one_tenant(db, tenant, gateway) -> None:
    sync.enqueue_event_deletion(db, 'other-tenant', 'evt_other')
    sync.enqueue_event_deletion(db, tenant.id, 'evt_mine')
    db.commit()

    report = sync.process_pending_tasks(db, gateway, tenant_id=tenant.id)

    assert len(report.done) == 1
    assert gateway.deleted == ['evt_mine']
    remaining = db.query(CalendarSyncTask).filter(CalendarSyncTask.status == TASK_PENDING).one()
    assert remaining.tenant_id == 'other-tenant'


def test_unknown_action_fails_task(db, tenant, gateway) -> None:
    db.add(CalendarSyncTask(tenant_id=tenant.id, action='rename_event', status=TASK_PENDING, attempts=0))
    db.commit()

    report = sync.process_pending_tasks(db, gateway)

    assert len(report.failed) == 1


def test_enqueue_event_creation_records_appointment(db, tenant) -> None:
    appointment = pending_appointment(db, tenant)

    task = db.query(CalendarSyncTask).one()
    assert task.action == SYNC_ACTION_CREATE_EVENT
    assert task.appointment_id == appointment.id
