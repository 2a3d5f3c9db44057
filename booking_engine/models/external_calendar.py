"""External calendar credential and sync outbox definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from booking_engine.core.timeutils import storage_now
from booking_engine.database import Base

CONNECTION_CONNECTED = 'connected'
CONNECTION_DISCONNECTED = 'disconnected'

SYNC_ACTION_CREATE_EVENT = 'create_event'
SYNC_ACTION_DELETE_EVENT = 'delete_event'

TASK_PENDING = 'pending'
TASK_DONE = 'done'
TASK_FAILED = 'failed'


class ExternalCalendarCredential(Base):
    """OAuth tokens for the one external calendar a tenant connects."""
    __tablename__ = "external_calendar_credentials"

    tenant_id = Column(String, ForeignKey("tenants.id"), primary_key=True)
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=False)
    calendar_id = Column(String, nullable=False, default='primary')
    last_refreshed_at = Column(DateTime, nullable=False, default=storage_now)
    connection_status = Column(String, nullable=False, default=CONNECTION_CONNECTED)


class CalendarSyncTask(Base):
    """Pending external calendar write, retried until it succeeds or gives up."""
    __tablename__ = "calendar_sync_tasks"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    action = Column(String, nullable=False)
    external_event_id = Column(String)
    status = Column(String, nullable=False, default=TASK_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String)
    created_at = Column(DateTime, default=storage_now)
    updated_at = Column(DateTime, default=storage_now, onupdate=storage_now)
