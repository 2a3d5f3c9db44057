"""
External Calendar Gateway (Google Calendar)

Owns the tenant's OAuth credential: refreshes the access token when it is
older than CALENDAR_TOKEN_REFRESH_MINUTES and flips the connection to
disconnected when Google rejects the refresh grant. A disconnected tenant is
not an error for readers; ``query_busy`` returns no busy periods and the
rest of the pipeline schedules against the local store only.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from weakref import WeakValueDictionary
from urllib.parse import quote, urlencode

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import CalendarAuthorizationError, UpstreamDegraded, UpstreamWriteFailure
from booking_engine.core.timeutils import parse_rfc3339, to_storage, utc_now
from booking_engine.models.external_calendar import (
    CONNECTION_CONNECTED,
    CONNECTION_DISCONNECTED,
    ExternalCalendarCredential,
)
from booking_engine.scheduling.conflicts import SOURCE_EXTERNAL, BusyPeriod

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = 'https://accounts.google.com/o/oauth2/v2/auth'
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GOOGLE_CALENDAR_API = 'https://www.googleapis.com/calendar/v3'

# An entry lives only while some caller holds its lock.
_refresh_locks: WeakValueDictionary[str, Lock] = WeakValueDictionary()
_refresh_locks_guard = Lock()


def _tenant_refresh_lock(tenant_id: str) -> Lock:
    with _refresh_locks_guard:
        lock = _refresh_locks.get(tenant_id)
        if lock is None:
            lock = Lock()
            _refresh_locks[tenant_id] = lock
        return lock


@dataclass(frozen=True)
class Credential:
    tenant_id: str
    access_token: str
    calendar_id: str


@dataclass(frozen=True)
class EventRef:
    event_id: str
    html_link: str | None = None


def _json(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_message(payload: dict) -> str:
    error = payload.get('error')
    if isinstance(error, dict):
        return error.get('message') or 'Unknown error'
    return payload.get('error_description') or error or 'Unknown error'


def _rfc3339(value: datetime) -> str:
    return value.isoformat()


class GoogleCalendarGateway:
    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        timeout: float | None = None,
        refresh_after_minutes: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client_id = client_id if client_id is not None else config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or config.GOOGLE_REDIRECT_URI
        self.timeout = timeout or config.CALENDAR_HTTP_TIMEOUT_SECONDS
        self.refresh_after = timedelta(minutes=refresh_after_minutes or config.CALENDAR_TOKEN_REFRESH_MINUTES)
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _auth_headers(credential: Credential) -> dict[str, str]:
        return {'Authorization': f'Bearer {credential.access_token}'}

    # Credentials -----------------------------------------------------------

    @staticmethod
    def _load(db: Session, tenant_id: str) -> ExternalCalendarCredential | None:
        return db.query(ExternalCalendarCredential).filter(
            ExternalCalendarCredential.tenant_id == tenant_id,
        ).first()

    def is_connected(self, db: Session, tenant_id: str) -> bool:
        record = self._load(db, tenant_id)
        return record is not None and record.connection_status == CONNECTION_CONNECTED

    def _is_stale(self, record: ExternalCalendarCredential) -> bool:
        return to_storage(utc_now()) - record.last_refreshed_at > self.refresh_after

    def get_valid_credential(self, db: Session, tenant_id: str) -> Credential | None:
        """Return a usable credential, or None when the tenant is not connected."""
        record = self._load(db, tenant_id)
        if record is None or record.connection_status != CONNECTION_CONNECTED:
            return None

        if not self._is_stale(record):
            return Credential(tenant_id, record.access_token, record.calendar_id or 'primary')

        with _tenant_refresh_lock(tenant_id):
            # Another request may have refreshed while we waited on the lock.
            db.refresh(record)
            if record.connection_status != CONNECTION_CONNECTED:
                return None
            if not self._is_stale(record):
                return Credential(tenant_id, record.access_token, record.calendar_id or 'primary')

            return self._refresh(db, record)

    def _refresh(self, db: Session, record: ExternalCalendarCredential) -> Credential | None:
        tenant_id = record.tenant_id
        observed_refresh = record.last_refreshed_at
        logger.info('Access token for tenant %s is stale. Refreshing.', tenant_id)

        try:
            with self._client() as client:
                response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        'client_id': self.client_id,
                        'client_secret': self.client_secret,
                        'refresh_token': record.refresh_token,
                        'grant_type': 'refresh_token',
                    },
                )
        except httpx.HTTPError as exc:
            raise UpstreamDegraded(f'Token refresh for tenant {tenant_id} failed: {exc}') from exc

        payload = _json(response)
        if response.status_code in (400, 401) or 'error' in payload:
            logger.warning(
                'Token refresh rejected for tenant %s (%s). Marking calendar disconnected.',
                tenant_id,
                _error_message(payload),
            )
            self.mark_disconnected(db, tenant_id)
            return None

        access_token = payload.get('access_token')
        if response.status_code >= 400 or not access_token:
            raise UpstreamDegraded(
                f'Token refresh for tenant {tenant_id} returned HTTP {response.status_code}.'
            )

        values = {'access_token': access_token, 'last_refreshed_at': to_storage(utc_now())}
        if payload.get('refresh_token'):
            values['refresh_token'] = payload['refresh_token']

        # Compare-and-swap on the refresh timestamp so a concurrent refresh in
        # another process is not overwritten with an older token.
        result = db.execute(
            update(ExternalCalendarCredential)
            .where(
                ExternalCalendarCredential.tenant_id == tenant_id,
                ExternalCalendarCredential.last_refreshed_at == observed_refresh,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(record)

        if result.rowcount == 0:
            logger.info('Token for tenant %s was refreshed concurrently; using the stored token.', tenant_id)
            if record.connection_status != CONNECTION_CONNECTED:
                return None

        return Credential(tenant_id, record.access_token, record.calendar_id or 'primary')

    def mark_disconnected(self, db: Session, tenant_id: str) -> None:
        db.execute(
            update(ExternalCalendarCredential)
            .where(ExternalCalendarCredential.tenant_id == tenant_id)
            .values(connection_status=CONNECTION_DISCONNECTED)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    # Reads -----------------------------------------------------------------

    def query_busy(
        self,
        db: Session,
        tenant_id: str,
        range_start: datetime,
        range_end: datetime,
        credential: Credential | None = None,
    ) -> list[BusyPeriod]:
        credential = credential or self.get_valid_credential(db, tenant_id)
        if credential is None:
            return []

        body = {
            'timeMin': _rfc3339(range_start),
            'timeMax': _rfc3339(range_end),
            'items': [{'id': credential.calendar_id}],
        }
        try:
            with self._client() as client:
                response = client.post(
                    f'{GOOGLE_CALENDAR_API}/freeBusy',
                    json=body,
                    headers=self._auth_headers(credential),
                )
        except httpx.HTTPError as exc:
            raise UpstreamDegraded(f'Free/busy query for tenant {tenant_id} failed: {exc}') from exc

        payload = _json(response)
        if response.status_code >= 400:
            raise UpstreamDegraded(
                f'Free/busy query for tenant {tenant_id} failed: {_error_message(payload)}'
            )

        calendar = payload.get('calendars', {}).get(credential.calendar_id, {})
        if calendar.get('errors'):
            raise UpstreamDegraded(f'Free/busy query for tenant {tenant_id} failed: {calendar["errors"]}')

        return [
            BusyPeriod(start=parse_rfc3339(busy['start']), end=parse_rfc3339(busy['end']), source=SOURCE_EXTERNAL)
            for busy in calendar.get('busy', [])
        ]

    # Writes ----------------------------------------------------------------

    def _writable_credential(self, db: Session, tenant_id: str) -> Credential:
        try:
            credential = self.get_valid_credential(db, tenant_id)
        except UpstreamDegraded as exc:
            raise UpstreamWriteFailure(str(exc)) from exc
        if credential is None:
            raise UpstreamWriteFailure(f'Calendar for tenant {tenant_id} is not connected.')
        return credential

    def create_event(
        self,
        db: Session,
        tenant_id: str,
        title: str,
        description: str,
        start: datetime,
        end: datetime,
        attendee_email: str | None = None,
        time_zone: str | None = None,
    ) -> EventRef:
        credential = self._writable_credential(db, tenant_id)
        time_zone = time_zone or config.DEFAULT_TIMEZONE
        event = {
            'summary': title,
            'description': description,
            'start': {'dateTime': _rfc3339(start), 'timeZone': time_zone},
            'end': {'dateTime': _rfc3339(end), 'timeZone': time_zone},
            'attendees': [{'email': attendee_email}] if attendee_email else [],
            'reminders': {'useDefault': True},
        }
        url = f'{GOOGLE_CALENDAR_API}/calendars/{quote(credential.calendar_id, safe="")}/events'

        try:
            with self._client() as client:
                response = client.post(url, json=event, headers=self._auth_headers(credential))
        except httpx.HTTPError as exc:
            raise UpstreamWriteFailure(f'Event creation for tenant {tenant_id} failed: {exc}') from exc

        payload = _json(response)
        if response.status_code >= 400 or not payload.get('id'):
            raise UpstreamWriteFailure(
                f'Event creation for tenant {tenant_id} failed: {_error_message(payload)}'
            )

        logger.info('Calendar event %s created for tenant %s.', payload['id'], tenant_id)
        return EventRef(event_id=payload['id'], html_link=payload.get('htmlLink'))

    def delete_event(self, db: Session, tenant_id: str, event_id: str) -> None:
        credential = self._writable_credential(db, tenant_id)
        url = (
            f'{GOOGLE_CALENDAR_API}/calendars/{quote(credential.calendar_id, safe="")}'
            f'/events/{quote(event_id, safe="")}'
        )

        try:
            with self._client() as client:
                response = client.delete(url, headers=self._auth_headers(credential))
        except httpx.HTTPError as exc:
            raise UpstreamWriteFailure(f'Event deletion for tenant {tenant_id} failed: {exc}') from exc

        # Already gone counts as retracted.
        if response.status_code in (404, 410):
            return
        if response.status_code >= 400:
            raise UpstreamWriteFailure(
                f'Event deletion for tenant {tenant_id} failed: {_error_message(_json(response))}'
            )

    # Connect flow ----------------------------------------------------------

    def build_authorization_url(self, state: str) -> str:
        query = urlencode({
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(config.GOOGLE_OAUTH_SCOPES),
            'access_type': 'offline',
            'prompt': 'consent',
            'state': state,
        })
        return f'{GOOGLE_AUTH_URL}?{query}'

    def exchange_code(self, db: Session, tenant_id: str, code: str, calendar_id: str = 'primary') -> ExternalCalendarCredential:
        try:
            with self._client() as client:
                response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        'code': code,
                        'client_id': self.client_id,
                        'client_secret': self.client_secret,
                        'redirect_uri': self.redirect_uri,
                        'grant_type': 'authorization_code',
                    },
                )
        except httpx.HTTPError as exc:
            raise CalendarAuthorizationError(f'Token exchange for tenant {tenant_id} failed: {exc}') from exc

        payload = _json(response)
        if response.status_code >= 400 or 'error' in payload:
            raise CalendarAuthorizationError(f'Token exchange failed: {_error_message(payload)}')
        if not payload.get('refresh_token'):
            raise CalendarAuthorizationError(
                'Refresh token missing. Ensure access_type=offline and prompt=consent were used.',
                narration='Refresh token missing. Please re-authenticate.',
            )

        record = self._load(db, tenant_id) or ExternalCalendarCredential(tenant_id=tenant_id)
        record.access_token = payload['access_token']
        record.refresh_token = payload['refresh_token']
        record.calendar_id = calendar_id
        record.last_refreshed_at = to_storage(utc_now())
        record.connection_status = CONNECTION_CONNECTED
        db.add(record)
        db.commit()
        db.refresh(record)

        logger.info('Calendar connected for tenant %s.', tenant_id)
        return record

    def disconnect(self, db: Session, tenant_id: str) -> None:
        self.mark_disconnected(db, tenant_id)
        logger.info('Calendar disconnected for tenant %s.', tenant_id)


_gateway: GoogleCalendarGateway | None = None


def get_calendar_gateway() -> GoogleCalendarGateway:
    global _gateway

    if _gateway is None:
        _gateway = GoogleCalendarGateway()
    return _gateway
