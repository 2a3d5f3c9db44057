"""Availability model definitions."""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, Time
from booking_engine.database import Base


class AvailabilityRule(Base):
    """Recurring weekly window (wall clock, tenant timezone). 0 = Sunday."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint('start_time < end_time', name='ck_availability_rules_start_before_end'),
        CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_rules_day_of_week'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
