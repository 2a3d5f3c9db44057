from urllib.parse import parse_qs, urlparse

import httpx

from booking_engine.auth import jwt_handler
from booking_engine.core import config
from booking_engine.external_calendar import sync
from booking_engine.external_calendar.google import GoogleCalendarGateway, get_calendar_gateway
from booking_engine.main import app
from booking_engine.models.external_calendar import CONNECTION_CONNECTED, ExternalCalendarCredential
from conftest import bearer


def google_token_gateway(payload: dict) -> GoogleCalendarGateway:
    return GoogleCalendarGateway(
        client_id='client-id',
        client_secret='client-secret',
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)),
    )


def test_connection_status_when_never_connected(client, tenant) -> None:
    response = client.get('/calendar/connection', headers=bearer())

    assert response.status_code == 200
    assert response.json()['connected'] is False


def test_authorization_url_carries_signed_state(client, tenant) -> None:
    response = client.get('/calendar/oauth/url', headers=bearer())

    assert response.status_code == 200
    state = parse_qs(urlparse(response.json()['authorization_url']).query)['state'][0]
    assert jwt_handler.decode_state_token(state) == 'acme'


def test_oauth_callback_connects_calendar(client, db, tenant, monkeypatch) -> None:
    monkeypatch.setattr(config, 'CALENDAR_CONNECTED_REDIRECT_URL', '')
    gateway = google_token_gateway({'access_token': 'access', 'refresh_token': 'refresh'})
    app.dependency_overrides[get_calendar_gateway] = lambda: gateway
    state = jwt_handler.create_state_token('acme')

    response = client.get('/calendar/oauth/callback', params={'code': 'auth-code', 'state': state})

    assert response.status_code == 200
    assert response.json()['connected'] is True
    assert db.get(ExternalCalendarCredential, 'acme').connection_status == CONNECTION_CONNECTED


def test_oauth_callback_redirects_when_configured(client, tenant, monkeypatch) -> None:
    monkeypatch.setattr(config, 'CALENDAR_CONNECTED_REDIRECT_URL', 'http://localhost:4200/settings')
    gateway = google_token_gateway({'access_token': 'access', 'refresh_token': 'refresh'})
    app.dependency_overrides[get_calendar_gateway] = lambda: gateway

    response = client.get(
        '/calendar/oauth/callback',
        params={'code': 'auth-code', 'state': jwt_handler.create_state_token('acme')},
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers['location'] == 'http://localhost:4200/settings?calendar=connected'


def test_oauth_callback_without_refresh_token_is_rejected(client, db, tenant) -> None:
    app.dependency_overrides[get_calendar_gateway] = lambda: google_token_gateway({'access_token': 'access'})

    response = client.get(
        '/calendar/oauth/callback',
        params={'code': 'auth-code', 'state': jwt_handler.create_state_token('acme')},
    )

    assert response.status_code == 400
    assert 're-authenticate' in response.json()['detail']
    assert db.get(ExternalCalendarCredential, 'acme') is None


def test_oauth_callback_rejects_forged_state(client, tenant) -> None:
    forged = jwt_handler.create_access_token('admin@acme', 'acme', role='admin')

    response = client.get('/calendar/oauth/callback', params={'code': 'auth-code', 'state': forged})

    assert response.status_code == 400


def test_oauth_callback_reports_declined_consent(client, tenant) -> None:
    response = client.get('/calendar/oauth/callback', params={'error': 'access_denied'})

    assert response.status_code == 400


def test_disconnect(client, tenant, gateway) -> None:
    response = client.delete('/calendar/connection', headers=bearer())

    assert response.status_code == 204
    assert ('disconnect', 'acme') in gateway.calls


def test_sync_drains_own_tenant_outbox(client, db, tenant, gateway) -> None:
    sync.enqueue_event_deletion(db, tenant.id, 'evt_1')
    sync.enqueue_event_deletion(db, 'other', 'evt_2')
    db.commit()

    response = client.post('/calendar/sync', headers=bearer())

    assert response.status_code == 200
    assert len(response.json()['done']) == 1
    assert gateway.deleted == ['evt_1']
