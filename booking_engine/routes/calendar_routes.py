import logging
from datetime import datetime
from urllib.parse import urlencode

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.auth import jwt_handler
from booking_engine.auth.dependencies import Principal, require_admin
from booking_engine.core import config
from booking_engine.core.errors import SchedulingError
from booking_engine.core.timeutils import from_storage
from booking_engine.external_calendar import sync
from booking_engine.external_calendar.google import GoogleCalendarGateway, get_calendar_gateway
from booking_engine.models.external_calendar import CONNECTION_CONNECTED, ExternalCalendarCredential
from booking_engine.routes.common import DATABASE_UNAVAILABLE, ensure_database_ready, get_db, raise_http_error
from booking_engine.scheduling import facade

router = APIRouter(tags=['calendar'])
logger = logging.getLogger(__name__)


class CalendarConnectionResponse(BaseModel):
    connected: bool
    calendar_id: str | None = None
    last_refreshed_at: datetime | None = None


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class SyncReportResponse(BaseModel):
    done: list[int]
    retrying: list[int]
    failed: list[int]


def connection_response(record: ExternalCalendarCredential | None) -> CalendarConnectionResponse:
    if record is None:
        return CalendarConnectionResponse(connected=False)
    return CalendarConnectionResponse(
        connected=record.connection_status == CONNECTION_CONNECTED,
        calendar_id=record.calendar_id,
        last_refreshed_at=from_storage(record.last_refreshed_at) if record.last_refreshed_at else None,
    )


@router.get('/connection', response_model=CalendarConnectionResponse)
def get_connection(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        record = db.get(ExternalCalendarCredential, principal.tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return connection_response(record)


@router.get('/oauth/url', response_model=AuthorizationUrlResponse)
def get_authorization_url(
    principal: Principal = Depends(require_admin),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    if not gateway.client_id:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Google Calendar is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.',
        )

    state = jwt_handler.create_state_token(principal.tenant_id)
    return AuthorizationUrlResponse(authorization_url=gateway.build_authorization_url(state))


@router.get('/oauth/callback')
def oauth_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    if error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Calendar authorization was declined: {error}.',
        )
    if not code or not state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Missing authorization code or state.',
        )

    try:
        tenant_id = jwt_handler.decode_state_token(state)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid or expired authorization state. Please start connecting again.',
        ) from exc

    ensure_database_ready()

    try:
        facade.resolve_tenant(db, tenant_id)
        record = gateway.exchange_code(db, tenant_id, code)
    except SchedulingError as exc:
        logger.warning('Calendar connect for tenant %s failed: %s', tenant_id, exc)
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    if config.CALENDAR_CONNECTED_REDIRECT_URL:
        query = urlencode({'calendar': 'connected'})
        return RedirectResponse(f'{config.CALENDAR_CONNECTED_REDIRECT_URL}?{query}')
    return connection_response(record)


@router.delete('/connection', status_code=status.HTTP_204_NO_CONTENT)
def delete_connection(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        gateway.disconnect(db, principal.tenant_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/sync', response_model=SyncReportResponse)
def run_sync(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        report = sync.process_pending_tasks(db, gateway, tenant_id=principal.tenant_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return SyncReportResponse(done=report.done, retrying=report.retrying, failed=report.failed)
