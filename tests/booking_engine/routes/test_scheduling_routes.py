from datetime import timedelta

import pytest
from pydantic import ValidationError

from booking_engine.models.appointment import BOOKED_BY_ADMIN, BOOKED_BY_CLIENT, Appointment
from booking_engine.routes.scheduling_routes import BookSlotRequest
from booking_engine.scheduling import narration
from conftest import bearer


def booking_body(start, **overrides):
    body = {
        'tenant_ref': 'acme',
        'datetime': start.isoformat() if start else None,
        'attendee_name': 'Jane Doe',
        'attendee_phone': '+15551234567',
        'attendee_email': 'Jane@Example.com',
        'meeting_type': 'video',
    }
    body.update(overrides)
    return body


def test_book_slot_request_normalizes_fields() -> None:
    request = BookSlotRequest(
        tenant_ref='acme',
        datetime='2026-01-05T10:00:00Z',
        attendee_name='  Jane  ',
        attendee_email=' JANE@EXAMPLE.COM ',
        meeting_type='In-Person',
        notes='   ',
    )

    assert request.attendee_name == 'Jane'
    assert request.attendee_email == 'jane@example.com'
    assert request.meeting_type == 'in_person'
    assert request.notes is None


@pytest.mark.parametrize(
    'overrides',
    [{'meeting_type': 'carrier pigeon'}, {'attendee_name': '   '}, {'notes': 'x' * 601}],
)
def test_book_slot_request_rejects_invalid_fields(overrides) -> None:
    fields = {'tenant_ref': 'acme', 'datetime': '2026-01-05T10:00:00Z', 'attendee_name': 'Jane', **overrides}

    with pytest.raises(ValidationError):
        BookSlotRequest(**fields)


def test_check_availability_lists_slots_with_narration(client, every_day_rules, tomorrow) -> None:
    response = client.post(
        '/scheduling/availability',
        json={'tenant_ref': 'acme', 'date': tomorrow.date().isoformat(), 'days_ahead': 1},
    )

    assert response.status_code == 200
    payload = response.json()
    assert len(payload['slots']) == 10
    assert payload['slots'][0]['time'] == '9:00 AM'
    assert payload['slots'][0]['datetime'] == tomorrow.replace(hour=9).isoformat()
    assert payload['narration'].startswith('Here are the available times:')
    assert payload['narration'].endswith('Which time works best for you?')


def test_check_availability_unknown_tenant_is_not_found(client) -> None:
    response = client.post('/scheduling/availability', json={'tenant_ref': 'nobody'})

    assert response.status_code == 404
    assert 'narration' in response.json()


def test_check_availability_without_rules_explains(client, tenant) -> None:
    response = client.post('/scheduling/availability', json={'tenant_ref': 'acme'})

    assert response.status_code == 200
    assert response.json() == {'slots': [], 'narration': narration.NOT_AVAILABLE_YET}


def test_check_availability_falls_back_to_local_slots_when_calendar_unreachable(
    client,
    every_day_rules,
    gateway,
) -> None:
    gateway.fail_reads = True

    response = client.post('/scheduling/availability', json={'tenant_ref': 'acme', 'date': 'tomorrow', 'days_ahead': 1})

    assert response.status_code == 200
    assert len(response.json()['slots']) == 10


def test_book_slot_returns_created_confirmation(client, db, every_day_rules, tomorrow, gateway) -> None:
    response = client.post('/scheduling/bookings', json=booking_body(tomorrow.replace(hour=10)))

    assert response.status_code == 201
    payload = response.json()
    assert payload['external_event_ref'] == 'evt_1'
    assert 'has been booked for' in payload['narration']
    appointment = db.get(Appointment, payload['appointment_id'])
    assert appointment.booked_by == BOOKED_BY_CLIENT
    assert appointment.caller_email == 'jane@example.com'
    assert appointment.appointment_type == 'video'


def test_admin_token_attributes_booking_to_admin(client, db, every_day_rules, tomorrow) -> None:
    response = client.post(
        '/scheduling/bookings',
        json=booking_body(tomorrow.replace(hour=11)),
        headers=bearer(role='admin'),
    )

    assert response.status_code == 201
    assert db.get(Appointment, response.json()['appointment_id']).booked_by == BOOKED_BY_ADMIN


def test_invalid_token_on_booking_is_unauthorized(client, every_day_rules, tomorrow) -> None:
    response = client.post(
        '/scheduling/bookings',
        json=booking_body(tomorrow.replace(hour=11)),
        headers={'Authorization': 'Bearer not-a-token'},
    )

    assert response.status_code == 401


def test_double_booking_is_a_conflict(client, every_day_rules, tomorrow) -> None:
    first = client.post('/scheduling/bookings', json=booking_body(tomorrow.replace(hour=10)))
    second = client.post('/scheduling/bookings', json=booking_body(tomorrow.replace(hour=10, minute=15)))

    assert first.status_code == 201
    assert second.status_code == 409
    assert 'no longer available' in second.json()['narration']


def test_booking_in_the_past_is_bad_request(client, every_day_rules, tomorrow, gateway) -> None:
    response = client.post('/scheduling/bookings', json=booking_body(tomorrow - timedelta(days=2)))

    assert response.status_code == 400
    assert response.json() == {'narration': narration.PAST_DATETIME}
    assert not any(call[0] == 'create_event' for call in gateway.calls)


def test_booking_unparseable_datetime_is_bad_request(client, tenant) -> None:
    response = client.post('/scheduling/bookings', json=booking_body(None, datetime='next tuesday-ish'))

    assert response.status_code == 400
    assert response.json() == {'narration': narration.UNPARSEABLE_DATETIME}
