import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.auth.dependencies import Principal, get_optional_principal
from booking_engine.core.errors import SchedulingError, StoreFailure
from booking_engine.external_calendar.google import GoogleCalendarGateway, get_calendar_gateway
from booking_engine.models.appointment import APPOINTMENT_TYPES, BOOKED_BY_ADMIN, BOOKED_BY_CLIENT
from booking_engine.routes import presenters
from booking_engine.routes.common import ensure_database_ready, get_db, narration_response
from booking_engine.scheduling import facade
from booking_engine.scheduling.booking import Attribution

router = APIRouter(tags=['scheduling'])
logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600


def normalize_meeting_type(value: str | None) -> str:
    normalized = (value or 'phone').strip().lower().replace('-', '_').replace(' ', '_')
    if normalized not in APPOINTMENT_TYPES:
        raise ValueError(f'Meeting type must be one of: {", ".join(APPOINTMENT_TYPES)}.')
    return normalized


def normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CheckAvailabilityRequest(BaseModel):
    tenant_ref: str
    date: str | None = None
    days_ahead: int | None = None

    @field_validator('days_ahead')
    @classmethod
    def validate_days_ahead(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('days_ahead must be at least 1.')
        return value


class SlotResponse(BaseModel):
    date: str
    time: str
    datetime: str


class AvailabilityResponse(BaseModel):
    slots: list[SlotResponse]
    narration: str


class BookSlotRequest(BaseModel):
    tenant_ref: str
    datetime: str
    attendee_name: str
    attendee_phone: str | None = None
    attendee_email: str | None = None
    meeting_type: str = 'phone'
    notes: str | None = None
    duration_minutes: int | None = None

    @field_validator('attendee_name')
    @classmethod
    def validate_attendee_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Attendee name is required.')
        return normalized

    @field_validator('attendee_email')
    @classmethod
    def validate_attendee_email(cls, value: str | None) -> str | None:
        normalized = normalize_optional(value)
        return normalized.lower() if normalized else None

    @field_validator('attendee_phone')
    @classmethod
    def validate_attendee_phone(cls, value: str | None) -> str | None:
        return normalize_optional(value)

    @field_validator('meeting_type')
    @classmethod
    def validate_meeting_type(cls, value: str) -> str:
        return normalize_meeting_type(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        normalized = normalize_optional(value)
        if normalized and len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
        return normalized


class BookingResponse(BaseModel):
    appointment_id: int
    external_event_ref: str | None = None
    datetime: str
    narration: str


@router.post('/availability', response_model=AvailabilityResponse)
def check_availability(
    data: CheckAvailabilityRequest,
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant(db, data.tenant_ref)
        days_ahead = facade.clamp_days_ahead(data.days_ahead, tenant)
        range_start = facade.resolve_range_start(data.date, tenant)
        listing = facade.list_available_slots(db, tenant, range_start, days_ahead, gateway)
    except SchedulingError as exc:
        return narration_response(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Availability lookup failed for tenant %s.', data.tenant_ref)
        return narration_response(StoreFailure(str(exc)))

    return presenters.listing_payload(listing, tenant)


@router.post(
    '/bookings',
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    data: BookSlotRequest,
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
    principal: Principal | None = Depends(get_optional_principal),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant(db, data.tenant_ref)
        chosen_start = facade.parse_requested_datetime(data.datetime, tenant)
        booked_by = (
            BOOKED_BY_ADMIN
            if principal is not None and principal.is_admin and principal.tenant_id == tenant.id
            else BOOKED_BY_CLIENT
        )
        attribution = Attribution(
            booked_by=booked_by,
            caller_name=data.attendee_name,
            caller_phone=data.attendee_phone,
            caller_email=data.attendee_email,
            appointment_type=data.meeting_type,
            notes=data.notes,
        )
        appointment = facade.book_slot(db, tenant, chosen_start, data.duration_minutes, attribution, gateway)
    except SchedulingError as exc:
        return narration_response(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking failed for tenant %s.', data.tenant_ref)
        return narration_response(StoreFailure(str(exc)))

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=presenters.booking_payload(appointment, tenant),
    )
