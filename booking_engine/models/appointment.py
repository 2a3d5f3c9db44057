"""Appointment model definitions."""

from datetime import datetime, timedelta

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from booking_engine.core.timeutils import storage_now
from booking_engine.database import Base

STATUS_SCHEDULED = 'scheduled'
STATUS_CANCELED = 'canceled'
STATUS_COMPLETED = 'completed'

BOOKED_BY_CLIENT = 'client'
BOOKED_BY_ADMIN = 'admin'
BOOKED_BY_VOICE_AGENT = 'voice_agent'

APPOINTMENT_TYPES = ('phone', 'video', 'in_person')

SYNC_NOT_CONNECTED = 'not_connected'
SYNC_SYNCED = 'synced'
SYNC_PENDING = 'pending'
SYNC_FAILED = 'failed'
SYNC_RETRACTED = 'retracted'


class Appointment(Base):
    """Represents a booked appointment. Start times are stored as naive UTC."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint('duration_minutes > 0', name='ck_appointments_positive_duration'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    appointment_type = Column(String, nullable=False, default='phone')
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    booked_by = Column(String, nullable=False, default=BOOKED_BY_CLIENT)
    caller_name = Column(String)
    caller_phone = Column(String)
    caller_email = Column(String)
    notes = Column(String)
    external_event_id = Column(String)
    external_sync_status = Column(String, nullable=False, default=SYNC_NOT_CONNECTED)
    call_id = Column(String)
    created_at = Column(DateTime, default=storage_now)

    claims = relationship(
        "AppointmentSlotClaim",
        back_populates="appointment",
        cascade="all, delete-orphan",
    )

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


class AppointmentSlotClaim(Base):
    """One timeline bucket held by a scheduled appointment.

    The unique (tenant_id, bucket_start) pair is what keeps two scheduled
    appointments of a tenant from overlapping.
    """
    __tablename__ = "appointment_slot_claims"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'bucket_start', name='uq_slot_claims_tenant_bucket'),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String, nullable=False)
    bucket_start = Column(DateTime, nullable=False)

    appointment = relationship("Appointment", back_populates="claims")
