from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.core.errors import (
    AppointmentNotFound,
    BookingValidationError,
    CalendarAuthorizationError,
    SchedulingError,
    SlotConflictError,
    StoreFailure,
    TenantNotFound,
    UpstreamDegraded,
)
from booking_engine.database import SessionLocal, ensure_appointment_schema, ensure_availability_schema

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES = {
    TenantNotFound: status.HTTP_404_NOT_FOUND,
    AppointmentNotFound: status.HTTP_404_NOT_FOUND,
    BookingValidationError: status.HTTP_400_BAD_REQUEST,
    CalendarAuthorizationError: status.HTTP_400_BAD_REQUEST,
    SlotConflictError: status.HTTP_409_CONFLICT,
    StoreFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
    UpstreamDegraded: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def status_code_for(exc: SchedulingError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def narration_response(exc: SchedulingError) -> JSONResponse:
    return JSONResponse(status_code=status_code_for(exc), content={'narration': exc.narration})


def raise_http_error(exc: SchedulingError) -> None:
    raise HTTPException(status_code=status_code_for(exc), detail=exc.narration) from exc
