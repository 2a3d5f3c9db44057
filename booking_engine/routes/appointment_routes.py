from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.auth.dependencies import Principal, require_admin
from booking_engine.core import config
from booking_engine.core.errors import SchedulingError
from booking_engine.core.timeutils import from_storage, to_storage, utc_now
from booking_engine.external_calendar.google import GoogleCalendarGateway, get_calendar_gateway
from booking_engine.models.appointment import STATUS_CANCELED, Appointment
from booking_engine.routes.common import DATABASE_UNAVAILABLE, ensure_database_ready, get_db, raise_http_error
from booking_engine.scheduling import booking
from booking_engine.scheduling.slots import MAX_DURATION_MINUTES

router = APIRouter(tags=['appointments'])


class AppointmentResponse(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    appointment_type: str
    status: str
    booked_by: str
    caller_name: str | None = None
    caller_phone: str | None = None
    caller_email: str | None = None
    notes: str | None = None
    external_event_id: str | None = None
    external_sync_status: str
    call_id: str | None = None


def appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        start_time=from_storage(appointment.start_time),
        end_time=from_storage(appointment.end_time),
        duration_minutes=appointment.duration_minutes,
        appointment_type=appointment.appointment_type,
        status=appointment.status,
        booked_by=appointment.booked_by,
        caller_name=appointment.caller_name,
        caller_phone=appointment.caller_phone,
        caller_email=appointment.caller_email,
        notes=appointment.notes,
        external_event_id=appointment.external_event_id,
        external_sync_status=appointment.external_sync_status,
        call_id=appointment.call_id,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    include_past: bool = Query(False),
    include_canceled: bool = Query(False),
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.tenant_id == principal.tenant_id)
        if not include_canceled:
            query = query.filter(Appointment.status != STATUS_CANCELED)
        if not include_past:
            # Nothing that started more than MAX_DURATION_MINUTES ago is still running.
            now = to_storage(utc_now())
            query = query.filter(Appointment.start_time > now - timedelta(minutes=MAX_DURATION_MINUTES))
        appointments = query.order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    if not include_past:
        appointments = [appointment for appointment in appointments if appointment.end_time > now]

    return [appointment_response(appointment) for appointment in appointments]


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        appointment = booking.cancel(
            db,
            principal.tenant_id,
            appointment_id,
            gateway=gateway if config.CALENDAR_RETRACT_ON_CANCEL else None,
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return appointment_response(appointment)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking.complete(db, principal.tenant_id, appointment_id)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return appointment_response(appointment)
