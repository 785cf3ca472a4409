"""Booking store: booking rows read and written inside the caller's transaction."""

from typing import Any

from sqlalchemy.orm import Session

from backend.models.booking import Booking


class BookingStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_booking(self, booking_id: str, for_update: bool = False) -> Booking | None:
        query = self.session.query(Booking).filter(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def create_booking(self, **fields: Any) -> Booking:
        booking = Booking(**fields)
        self.session.add(booking)
        self.session.flush()
        return booking

    def update_booking(self, booking_id: str, **changes: Any) -> Booking:
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise LookupError(f'Booking {booking_id} does not exist')

        for key, value in changes.items():
            setattr(booking, key, value)

        self.session.flush()
        return booking
