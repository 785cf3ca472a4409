"""
Typed errors raised by the booking engine.

Every error carries a stable ``reason`` string. The route layer maps the
error category to a transport status; the engine itself knows nothing
about HTTP.
"""

from typing import Any


class BookingEngineError(Exception):
    """Base class for all booking engine failures."""

    reason = 'booking_error'
    default_message = 'Booking operation failed'

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'reason': self.reason, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFoundError(BookingEngineError):
    reason = 'not_found'


class ConflictError(BookingEngineError):
    reason = 'conflict'


class OwnershipMismatchError(BookingEngineError):
    reason = 'ownership_mismatch'


class SlotNotFound(NotFoundError):
    reason = 'slot_not_found'
    default_message = 'Availability slot not found'


class BookingNotFound(NotFoundError):
    reason = 'booking_not_found'
    default_message = 'Booking not found'


class NewSlotNotFound(NotFoundError):
    reason = 'new_slot_not_found'
    default_message = 'New availability slot not found'


class SlotAlreadyBooked(ConflictError):
    reason = 'slot_already_booked'
    default_message = 'Availability slot already booked'


class NewSlotAlreadyBooked(ConflictError):
    reason = 'new_slot_already_booked'
    default_message = 'New availability slot already booked'


class BookingNotActive(ConflictError):
    reason = 'booking_not_active'
    default_message = 'Booking can no longer be changed'


class SlotOwnershipMismatch(OwnershipMismatchError):
    reason = 'slot_ownership_mismatch'
    default_message = 'Availability does not belong to therapist'


class SlotTherapistMismatch(OwnershipMismatchError):
    reason = 'slot_therapist_mismatch'
    default_message = 'New slot must belong to the same therapist'


class NotAuthorized(BookingEngineError):
    reason = 'not_authorized'
    default_message = 'Not authorized to modify this booking'


class StoreUnavailable(BookingEngineError):
    """The persistence layer failed or timed out; nothing was written."""

    reason = 'store_unavailable'
    default_message = 'Booking store unavailable'
