from datetime import time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.auth.dependencies import Principal, require_admin
from booking_engine.core.errors import SchedulingError
from booking_engine.core.timeutils import get_zone
from booking_engine.routes.common import DATABASE_UNAVAILABLE, ensure_database_ready, get_db, raise_http_error
from booking_engine.scheduling import availability, facade
from booking_engine.scheduling.slots import MAX_DURATION_MINUTES

router = APIRouter(tags=['availability'])

DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class AvailabilityRuleRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_whole_minute(cls, value: time) -> time:
        if value.second or value.microsecond:
            raise ValueError('Availability times must be whole minutes.')
        return value

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityRuleRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class ReplaceRulesRequest(BaseModel):
    rules: list[AvailabilityRuleRequest]


class AvailabilityRuleResponse(BaseModel):
    id: int
    day_of_week: int
    day_name: str
    start_time: time
    end_time: time


class SchedulingSettingsRequest(BaseModel):
    timezone: str | None = None
    default_meeting_duration: int | None = None
    buffer_minutes: int | None = None
    max_advance_days: int | None = None
    can_book_meetings: bool | None = None
    voice_requires_calendar: bool | None = None

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if get_zone(normalized).key != normalized:
            raise ValueError(f'Unknown timezone {normalized!r}.')
        return normalized

    @field_validator('default_meeting_duration')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        if value is not None and not 0 < value <= MAX_DURATION_MINUTES:
            raise ValueError(f'Meeting duration must be between 1 and {MAX_DURATION_MINUTES} minutes.')
        return value

    @field_validator('buffer_minutes')
    @classmethod
    def validate_buffer(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Buffer minutes cannot be negative.')
        return value

    @field_validator('max_advance_days')
    @classmethod
    def validate_max_advance_days(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('Max advance days must be at least 1.')
        return value


class SchedulingSettingsResponse(BaseModel):
    tenant_id: str
    business_name: str
    timezone: str
    default_meeting_duration: int
    buffer_minutes: int
    max_advance_days: int
    can_book_meetings: bool
    voice_requires_calendar: bool

    class Config:
        from_attributes = True


def rule_response(rule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=rule.id,
        day_of_week=rule.day_of_week,
        day_name=DAY_NAMES[rule.day_of_week],
        start_time=rule.start_time,
        end_time=rule.end_time,
    )


@router.get('/rules', response_model=list[AvailabilityRuleResponse])
def list_rules(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [rule_response(rule) for rule in availability.load_rules(db, principal.tenant_id)]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/rules', response_model=list[AvailabilityRuleResponse])
def replace_rules(
    data: ReplaceRulesRequest,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        facade.resolve_tenant(db, principal.tenant_id)
        rules = availability.replace_rules(
            db,
            principal.tenant_id,
            [
                availability.RuleSpec(rule.day_of_week, rule.start_time, rule.end_time)
                for rule in data.rules
            ],
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return [rule_response(rule) for rule in rules]


def settings_response(tenant) -> SchedulingSettingsResponse:
    return SchedulingSettingsResponse(
        tenant_id=tenant.id,
        business_name=tenant.business_name or '',
        timezone=tenant.timezone,
        default_meeting_duration=tenant.default_meeting_duration,
        buffer_minutes=tenant.buffer_minutes,
        max_advance_days=tenant.max_advance_days,
        can_book_meetings=tenant.can_book_meetings,
        voice_requires_calendar=tenant.voice_requires_calendar,
    )


@router.get('/settings', response_model=SchedulingSettingsResponse)
def get_settings(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant(db, principal.tenant_id)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return settings_response(tenant)


@router.put('/settings', response_model=SchedulingSettingsResponse)
def update_settings(
    data: SchedulingSettingsRequest,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant(db, principal.tenant_id)
        for field_name, value in data.model_dump(exclude_none=True).items():
            setattr(tenant, field_name, value)
        db.commit()
        db.refresh(tenant)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return settings_response(tenant)
