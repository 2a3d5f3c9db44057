"""Tenant model definitions."""

from sqlalchemy import Boolean, Column, Integer, String

from booking_engine.core import config
from booking_engine.database import Base


class Tenant(Base):
    """A business that accepts appointments, with its scheduling settings."""
    __tablename__ = "tenants"

    id = Column(String, primary_key=True)
    business_name = Column(String, nullable=False, default='')
    timezone = Column(String, nullable=False, default=config.DEFAULT_TIMEZONE)
    default_meeting_duration = Column(Integer, nullable=False, default=config.DEFAULT_MEETING_DURATION_MINUTES)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    max_advance_days = Column(Integer, nullable=False, default=60)
    can_book_meetings = Column(Boolean, nullable=False, default=True)
    voice_agent_id = Column(String, unique=True, index=True, nullable=True)
    voice_requires_calendar = Column(Boolean, nullable=False, default=True)
