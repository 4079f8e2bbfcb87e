"""Error taxonomy shared by the availability resolver and the booking committer."""


class BookingError(Exception):
    """Base class for every error the booking core raises on purpose."""

    default_message = 'Booking request failed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class StoreUnavailable(BookingError):
    """A read or write against the persistence layer failed."""

    default_message = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


class InvalidTimezone(BookingError):
    """The provider's timezone identifier is not a known IANA zone."""

    default_message = 'Provider timezone is misconfigured.'

    def __init__(self, timezone_name: str | None, message: str | None = None):
        self.timezone_name = timezone_name
        super().__init__(message or f'Unknown timezone: {timezone_name!r}.')


class SlotConflict(BookingError):
    """Another booked appointment already overlaps the requested interval."""

    default_message = 'This time was just booked. Please pick another time.'


class InvalidSlotSelection(BookingError):
    """The requested start is not offered by a fresh availability resolution."""

    default_message = 'This time is no longer available. Please pick another time.'


class ValidationError(BookingError):
    """User-correctable input problem (service, patient or schedule fields)."""

    default_message = 'Invalid booking details.'


class ProviderNotFound(BookingError):
    default_message = 'Provider not found.'


class AppointmentNotFound(BookingError):
    default_message = 'Appointment not found.'


class EmailDeliveryError(BookingError):
    """Template lookup or delivery failed. Never rolls back a booking."""

    default_message = 'Email could not be sent.'
