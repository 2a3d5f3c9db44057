"""Voice-agent function webhooks.

The agent platform posts ``{agent_id, call_id, args}`` while a call is live
and reads ``result`` back to the caller, so every outcome, failures included,
is an HTTP 200 whose ``result`` is something the agent can say.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.errors import BookingValidationError, SchedulingError, StoreFailure
from booking_engine.external_calendar.google import GoogleCalendarGateway, get_calendar_gateway
from booking_engine.models.appointment import BOOKED_BY_VOICE_AGENT
from booking_engine.routes import presenters
from booking_engine.routes.common import ensure_database_ready, get_db
from booking_engine.routes.scheduling_routes import normalize_meeting_type, normalize_optional
from booking_engine.scheduling import facade, narration
from booking_engine.scheduling.booking import Attribution

router = APIRouter(tags=['voice'])
logger = logging.getLogger(__name__)


class VoiceFunctionCall(BaseModel):
    agent_id: str | None = None
    call_id: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)


def _arg(args: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = args.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _int_arg(args: dict[str, Any], *names: str) -> int | None:
    value = _arg(args, *names)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def attribution_from_args(args: dict[str, Any], call_id: str | None) -> Attribution:
    try:
        meeting_type = normalize_meeting_type(_arg(args, 'meeting_type', 'appointment_type'))
    except ValueError:
        meeting_type = 'phone'

    email = _arg(args, 'caller_email', 'email')
    return Attribution(
        booked_by=BOOKED_BY_VOICE_AGENT,
        caller_name=_arg(args, 'caller_name', 'name'),
        caller_phone=_arg(args, 'caller_phone', 'phone'),
        caller_email=email.lower() if email else None,
        appointment_type=meeting_type,
        notes=normalize_optional(_arg(args, 'notes')),
        call_id=call_id,
    )


@router.post('/check-availability')
def voice_check_availability(
    data: VoiceFunctionCall,
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant_by_agent(db, data.agent_id)
        days_ahead = facade.clamp_days_ahead(_int_arg(data.args, 'days_ahead'), tenant)
        range_start = facade.resolve_range_start(_arg(data.args, 'date', 'preferred_date'), tenant)
        listing = facade.list_available_slots(db, tenant, range_start, days_ahead, gateway)
    except SchedulingError as exc:
        logger.warning('Voice availability check for agent %s failed: %s', data.agent_id, exc)
        return {'result': narration.UNABLE_TO_CHECK, 'available_slots': []}
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Voice availability check for agent %s hit a database error.', data.agent_id)
        return {'result': narration.UNABLE_TO_CHECK, 'available_slots': []}

    payload = presenters.listing_payload(listing, tenant, voice=True)
    return {'result': payload['narration'], 'available_slots': payload['slots']}


@router.post('/book-meeting')
def voice_book_meeting(
    data: VoiceFunctionCall,
    db: Session = Depends(get_db),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
):
    ensure_database_ready()

    try:
        tenant = facade.resolve_tenant_by_agent(db, data.agent_id)
        chosen_start = facade.parse_requested_datetime(_arg(data.args, 'datetime', 'chosen_datetime'), tenant)
        attribution = attribution_from_args(data.args, data.call_id)
        if not attribution.caller_name:
            raise BookingValidationError(
                'Voice booking is missing the caller name.',
                narration="May I have your name so I can put it on the booking?",
            )
        appointment = facade.book_slot(
            db,
            tenant,
            chosen_start,
            _int_arg(data.args, 'duration_minutes'),
            attribution,
            gateway,
        )
    except SchedulingError as exc:
        logger.info('Voice booking for agent %s (call %s) not made: %s', data.agent_id, data.call_id, exc)
        return {'result': exc.narration}
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Voice booking for agent %s hit a database error.', data.agent_id)
        return {'result': StoreFailure(str(exc)).narration}

    payload = presenters.booking_payload(appointment, tenant)
    return {
        'result': payload['narration'],
        'appointment_id': payload['appointment_id'],
        'external_event_ref': payload['external_event_ref'],
    }
