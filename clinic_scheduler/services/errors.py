"""Error kinds raised by the scheduling core.

Every error is recoverable by the caller. The request layer maps each kind to
an HTTP status in ``clinic_scheduler.routes.common``.
"""


class SchedulingError(Exception):
    """Base class for all scheduling failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(SchedulingError):
    """Past date-time, malformed availability rule or bad duration."""


class SlotConflictError(SchedulingError):
    """Another patient already holds the requested slot."""

    waitlist_available = True


class DuplicateBookingError(SchedulingError):
    """The same patient already holds the requested slot."""


class OutsideAvailabilityError(SchedulingError):
    """The requested time does not match any projected slot of the provider."""


class NotFoundError(SchedulingError):
    pass


class UnauthorizedError(SchedulingError):
    """The requester does not own the record it tries to change."""


class InvalidStateTransitionError(SchedulingError):
    pass
