"""
Booking transaction engine.

Owns every change to ``Availability.is_booked`` and to a booking's status.
Each public operation runs inside exactly one UnitOfWork: preconditions are
checked inside the transaction, in a fixed order, and any failure rolls
back every write made so far. The payment record is the one exception; it
is written best-effort inside a savepoint and its failure is logged and
dropped.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from backend.core.exceptions import (
    BookingNotActive,
    BookingNotFound,
    NewSlotAlreadyBooked,
    NewSlotNotFound,
    NotAuthorized,
    SlotAlreadyBooked,
    SlotNotFound,
    SlotOwnershipMismatch,
    SlotTherapistMismatch,
    StoreUnavailable,
)
from backend.models.booking import Booking
from backend.repositories.slot_store import SlotStateConflict
from backend.repositories.unit_of_work import UnitOfWork
from backend.services.authorization import Actor, can_manage_booking
from backend.services.payment_recorder import SqlPaymentRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRecord:
    """Detached snapshot of a booking row, safe to use after the session closes."""

    id: str
    client_id: str
    therapist_id: str
    availability_id: str | None
    start_ts: datetime
    end_ts: datetime
    status: BookingStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, booking: Booking) -> 'BookingRecord':
        return cls(
            id=booking.id,
            client_id=booking.client_id,
            therapist_id=booking.therapist_id,
            availability_id=booking.availability_id,
            start_ts=booking.start_ts,
            end_ts=booking.end_ts,
            status=BookingStatus(booking.status),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


def unit_of_work_factory(
    session_factory: Callable[[], Session],
    record_payments: bool = True,
) -> Callable[[], UnitOfWork]:
    recorder_factory = SqlPaymentRecorder if record_payments else None
    return partial(UnitOfWork, session_factory, payment_recorder_factory=recorder_factory)


class BookingEngine:
    def __init__(
        self,
        unit_of_work: Callable[[], UnitOfWork],
        authorize: Callable[[Actor, Booking], bool] = can_manage_booking,
    ) -> None:
        self._unit_of_work = unit_of_work
        self._authorize = authorize

    def create_booking(
        self,
        client_id: str,
        therapist_id: str,
        availability_id: str,
        amount: Decimal | float,
        currency: str,
        payment_reference: str | None = None,
    ) -> BookingRecord:
        details = {'availability_id': availability_id}
        try:
            with self._unit_of_work() as uow:
                slot = uow.slots.get_slot(availability_id, for_update=True)
                if slot is None:
                    raise SlotNotFound(details=details)
                if slot.is_booked:
                    raise SlotAlreadyBooked(details=details)
                if slot.therapist_id != therapist_id:
                    raise SlotOwnershipMismatch(details={**details, 'therapist_id': therapist_id})

                booking = uow.bookings.create_booking(
                    client_id=client_id,
                    therapist_id=therapist_id,
                    availability_id=slot.id,
                    start_ts=slot.start_ts,
                    end_ts=slot.end_ts,
                    status=BookingStatus.CONFIRMED.value,
                )

                self._record_payment(uow, booking.id, amount, currency, payment_reference)

                try:
                    uow.slots.set_booked(slot.id, True)
                except SlotStateConflict as exc:
                    raise SlotAlreadyBooked(details=details) from exc

                record = BookingRecord.from_model(booking)
        except IntegrityError as exc:
            # Another transaction committed a booking for the same window first.
            raise SlotAlreadyBooked(details=details) from exc
        except SQLAlchemyError as exc:
            logger.exception('Create booking failed in the store for slot %s', availability_id)
            raise StoreUnavailable(details=details) from exc

        logger.info('Booking %s confirmed for client %s on slot %s', record.id, client_id, availability_id)
        return record

    def cancel_booking(self, booking_id: str, actor: Actor) -> BookingRecord:
        try:
            with self._unit_of_work() as uow:
                booking = self._load_for_change(uow, booking_id, actor)
                booking = uow.bookings.update_booking(booking.id, status=BookingStatus.CANCELLED.value)
                self._release_slot(uow, booking)
                record = BookingRecord.from_model(booking)
        except SQLAlchemyError as exc:
            logger.exception('Cancel booking %s failed in the store', booking_id)
            raise StoreUnavailable(details={'booking_id': booking_id}) from exc

        logger.info('Booking %s cancelled by %s %s', booking_id, actor.role.value, actor.id)
        return record

    def reschedule_booking(self, booking_id: str, new_availability_id: str, actor: Actor) -> BookingRecord:
        details = {'booking_id': booking_id, 'availability_id': new_availability_id}
        try:
            with self._unit_of_work() as uow:
                booking = self._load_for_change(uow, booking_id, actor)

                new_slot = uow.slots.get_slot(new_availability_id, for_update=True)
                if new_slot is None:
                    raise NewSlotNotFound(details=details)
                if new_slot.is_booked:
                    raise NewSlotAlreadyBooked(details=details)
                if new_slot.therapist_id != booking.therapist_id:
                    raise SlotTherapistMismatch(details=details)

                self._release_slot(uow, booking)

                # Claim the new slot before touching the booking row.
                try:
                    new_slot = uow.slots.set_booked(new_slot.id, True)
                except SlotStateConflict as exc:
                    raise NewSlotAlreadyBooked(details=details) from exc

                booking = uow.bookings.update_booking(
                    booking.id,
                    availability_id=new_slot.id,
                    start_ts=new_slot.start_ts,
                    end_ts=new_slot.end_ts,
                    status=BookingStatus.RESCHEDULED.value,
                )
                record = BookingRecord.from_model(booking)
        except IntegrityError as exc:
            raise NewSlotAlreadyBooked(details=details) from exc
        except SQLAlchemyError as exc:
            logger.exception('Reschedule booking %s failed in the store', booking_id)
            raise StoreUnavailable(details=details) from exc

        logger.info('Booking %s rescheduled to slot %s by %s %s', booking_id, new_availability_id, actor.role.value, actor.id)
        return record

    def get_booking(self, booking_id: str, actor: Actor) -> BookingRecord:
        try:
            with self._unit_of_work() as uow:
                booking = uow.bookings.get_booking(booking_id)
                if booking is None:
                    raise BookingNotFound(details={'booking_id': booking_id})
                if not self._authorize(actor, booking):
                    raise NotAuthorized(details={'booking_id': booking_id})
                record = BookingRecord.from_model(booking)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(details={'booking_id': booking_id}) from exc
        return record

    def _load_for_change(self, uow: UnitOfWork, booking_id: str, actor: Actor) -> Booking:
        booking = uow.bookings.get_booking(booking_id, for_update=True)
        if booking is None:
            raise BookingNotFound(details={'booking_id': booking_id})
        if not self._authorize(actor, booking):
            raise NotAuthorized(details={'booking_id': booking_id})
        if BookingStatus(booking.status) not in ACTIVE_BOOKING_STATUSES:
            raise BookingNotActive(details={'booking_id': booking_id, 'status': booking.status})
        return booking

    def _release_slot(self, uow: UnitOfWork, booking: Booking) -> None:
        """Free the slot the booking holds, if it can still be found."""
        slot = None
        if booking.availability_id:
            slot = uow.slots.get_slot(booking.availability_id, for_update=True)
        if slot is None:
            slot = uow.slots.find_slot_by_therapist_and_window(booking.therapist_id, booking.start_ts, booking.end_ts)

        if slot is None:
            logger.info('No slot matches booking %s; nothing to release', booking.id)
            return
        if not slot.is_booked:
            logger.warning('Slot %s for booking %s was already free', slot.id, booking.id)
            return

        try:
            uow.slots.set_booked(slot.id, False)
        except SlotStateConflict:
            logger.warning('Slot %s for booking %s was freed concurrently', slot.id, booking.id)

    def _record_payment(
        self,
        uow: UnitOfWork,
        booking_id: str,
        amount: Decimal | float,
        currency: str,
        reference: str | None,
    ) -> None:
        if uow.payments is None:
            return
        try:
            uow.payments.record_payment(booking_id, amount, currency, reference)
        except Exception:
            # Never retried and never fatal to the booking.
            logger.warning('Payment record for booking %s failed; booking kept', booking_id, exc_info=True)
