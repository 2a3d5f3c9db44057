"""Scheduling error taxonomy.

Every error carries a ``narration``: the sentence a caller (web client or
voice agent) should see, phrased as the next action they can take.
"""


class SchedulingError(Exception):
    default_narration = 'Something went wrong. Please try again.'

    def __init__(self, message: str, narration: str | None = None):
        super().__init__(message)
        self.narration = narration or self.default_narration


class TenantNotFound(SchedulingError):
    default_narration = (
        'I am unable to check availability right now. '
        'Please leave your contact information and someone will reach out.'
    )


class BookingValidationError(SchedulingError):
    """Malformed or past datetime, bad duration. Raised before any I/O."""

    default_narration = 'That time does not work. Would you like to pick a different time?'


class SlotConflictError(SchedulingError):
    """The slot was taken between listing and booking."""

    default_narration = (
        'That time slot is no longer available. '
        'Would you like me to check for other available times?'
    )


class UpstreamDegraded(SchedulingError):
    """External calendar is disconnected or unreachable for reads."""

    default_narration = 'I am having trouble checking the calendar right now.'


class UpstreamWriteFailure(SchedulingError):
    """External calendar event creation or retraction failed."""


class StoreFailure(SchedulingError):
    default_narration = (
        'I ran into an issue completing the booking. '
        'Please try again in a moment.'
    )


class AppointmentNotFound(SchedulingError):
    default_narration = 'I could not find that appointment.'


class CalendarAuthorizationError(SchedulingError):
    """The OAuth connect flow could not produce a usable credential."""

    default_narration = 'Connecting the calendar failed. Please try connecting again.'
