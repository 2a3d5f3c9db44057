"""
Availability Store

Weekly availability rules per tenant. The admin replaces the whole set on
every save; there is no per-rule edit.
"""

from dataclasses import dataclass
from datetime import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.errors import BookingValidationError
from booking_engine.models.availability import AvailabilityRule


@dataclass(frozen=True)
class RuleSpec:
    day_of_week: int
    start_time: time
    end_time: time


def validate_rule(rule: RuleSpec) -> None:
    if not 0 <= rule.day_of_week <= 6:
        raise BookingValidationError(f'day_of_week must be between 0 and 6, got {rule.day_of_week}.')
    if rule.start_time >= rule.end_time:
        raise BookingValidationError(
            f'Availability window must start before it ends ({rule.start_time} >= {rule.end_time}).'
        )


def load_rules(db: Session, tenant_id: str) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.tenant_id == tenant_id,
    ).order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


def replace_rules(db: Session, tenant_id: str, rules: list[RuleSpec]) -> list[AvailabilityRule]:
    """Delete every rule of the tenant and insert ``rules`` in one transaction."""
    for rule in rules:
        validate_rule(rule)

    try:
        db.query(AvailabilityRule).filter(AvailabilityRule.tenant_id == tenant_id).delete(
            synchronize_session=False,
        )
        db.add_all(
            AvailabilityRule(
                tenant_id=tenant_id,
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
            )
            for rule in rules
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    return load_rules(db, tenant_id)
