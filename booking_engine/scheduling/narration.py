"""Human-readable framing of slots and bookings, in the tenant's timezone."""

from datetime import datetime
from typing import Sequence

from booking_engine.core import config
from booking_engine.core.timeutils import from_storage, get_zone
from booking_engine.models.appointment import BOOKED_BY_VOICE_AGENT, Appointment
from booking_engine.scheduling.slots import CandidateSlot

CALENDAR_NOT_CONNECTED = (
    'Calendar is not currently connected. Please leave your contact information '
    'and someone will reach out to schedule.'
)
CALENDAR_UNREACHABLE = (
    'I am having trouble checking the calendar right now. '
    'Can I take your number and have someone call you back?'
)
NOT_AVAILABLE_YET = 'Availability has not been set yet. Please check back later.'
UNABLE_TO_CHECK = (
    'I apologize, but I am unable to check availability right now. '
    'Please call back or leave your contact information.'
)
BOOKING_DISABLED = (
    'Booking is not available at this time. '
    'Let me take your information and someone will reach out.'
)
MISSING_DATETIME = 'I need a specific date and time to book. Could you tell me which time slot you prefer?'
UNPARSEABLE_DATETIME = 'I had trouble understanding that time. Could you specify the date and time again?'
PAST_DATETIME = 'That time has already passed. Would you like to pick a different time?'


def format_slot_date(value: datetime, time_zone: str) -> str:
    local = value.astimezone(get_zone(time_zone))
    return f'{local:%A}, {local:%B} {local.day}'


def format_slot_time(value: datetime, time_zone: str) -> str:
    local = value.astimezone(get_zone(time_zone))
    hour = local.hour % 12 or 12
    return f'{hour}:{local:%M} {"AM" if local.hour < 12 else "PM"}'


def describe_slots(slots: Sequence[CandidateSlot], time_zone: str, days_ahead: int) -> str:
    if not slots:
        return (
            f'There are no available slots in the next {days_ahead} days. Would you like to leave '
            'your contact information so someone can reach out to schedule?'
        )

    spoken = ', '.join(
        f'{format_slot_date(slot.start, time_zone)} at {format_slot_time(slot.start, time_zone)}'
        for slot in slots[:config.MAX_SLOTS_NARRATED]
    )
    return f'Here are the available times: {spoken}. Which time works best for you?'


def describe_confirmation(appointment: Appointment, business_name: str | None, time_zone: str) -> str:
    start = from_storage(appointment.start_time)
    meeting_type = (appointment.appointment_type or 'phone').replace('_', '-')
    return (
        f'Your {meeting_type} appointment with {business_name or "us"} has been booked for '
        f'{format_slot_date(start, time_zone)} at {format_slot_time(start, time_zone)}. '
        f'The meeting is {appointment.duration_minutes} minutes. Is there anything else I can help you with?'
    )


def event_title(appointment: Appointment) -> str:
    return f'Meeting with {appointment.caller_name or "Unknown Caller"}'


def event_description(appointment: Appointment) -> str:
    lines = [
        'Booked by AI Agent via phone call' if appointment.booked_by == BOOKED_BY_VOICE_AGENT
        else f'Booked by {appointment.booked_by}',
        f'Caller: {appointment.caller_name or "Unknown Caller"}',
        f'Phone: {appointment.caller_phone}' if appointment.caller_phone else '',
        f'Email: {appointment.caller_email}' if appointment.caller_email else '',
        f'Notes: {appointment.notes}' if appointment.notes else '',
        f'Type: {appointment.appointment_type}',
        f'Call ID: {appointment.call_id}' if appointment.call_id else '',
    ]
    return '\n'.join(line for line in lines if line)
