"""Enumerations shared by the models and the booking engine."""

from enum import Enum


class ActorRole(str, Enum):
    CLIENT = 'CLIENT'
    THERAPIST = 'THERAPIST'
    ADMIN = 'ADMIN'


class BookingStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'
    RESCHEDULED = 'RESCHEDULED'
    COMPLETED = 'COMPLETED'
    NO_SHOW = 'NO_SHOW'


# Statuses the engine may still move out of. Everything else is terminal.
ACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class PaymentStatus(str, Enum):
    PENDING = 'PENDING'
    PAID = 'PAID'
    FAILED = 'FAILED'
    REFUNDED = 'REFUNDED'
