"""Shapes listings and bookings into the responses web and voice callers read."""

from booking_engine.core.timeutils import from_storage
from booking_engine.models.appointment import Appointment
from booking_engine.models.tenant import Tenant
from booking_engine.scheduling import narration
from booking_engine.scheduling.facade import CALENDAR_DISCONNECTED, CALENDAR_UNREACHABLE, SlotListing
from booking_engine.scheduling.slots import CandidateSlot


def slot_payload(slot: CandidateSlot, tenant: Tenant) -> dict:
    return {
        'date': narration.format_slot_date(slot.start, tenant.timezone),
        'time': narration.format_slot_time(slot.start, tenant.timezone),
        'datetime': slot.start.isoformat(),
    }


def voice_calendar_unavailable(listing: SlotListing, tenant: Tenant) -> bool:
    return tenant.voice_requires_calendar and listing.calendar_status == CALENDAR_DISCONNECTED


def describe_listing(listing: SlotListing, tenant: Tenant) -> str:
    if not listing.has_rules:
        return narration.NOT_AVAILABLE_YET
    if not listing.slots and listing.calendar_status == CALENDAR_UNREACHABLE:
        return narration.CALENDAR_UNREACHABLE
    return narration.describe_slots(listing.slots, tenant.timezone, listing.days_ahead)


def listing_payload(listing: SlotListing, tenant: Tenant, voice: bool = False) -> dict:
    if voice and voice_calendar_unavailable(listing, tenant):
        return {'slots': [], 'narration': narration.CALENDAR_NOT_CONNECTED}

    return {
        'slots': [slot_payload(slot, tenant) for slot in listing.slots],
        'narration': describe_listing(listing, tenant),
    }


def booking_payload(appointment: Appointment, tenant: Tenant) -> dict:
    return {
        'appointment_id': appointment.id,
        'external_event_ref': appointment.external_event_id,
        'datetime': from_storage(appointment.start_time).isoformat(),
        'narration': narration.describe_confirmation(appointment, tenant.business_name, tenant.timezone),
    }
