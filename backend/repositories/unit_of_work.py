"""
Explicit transaction handle for one booking engine operation.

    with UnitOfWork(SessionLocal) as uow:
        slot = uow.slots.get_slot(slot_id, for_update=True)
        ...

The block commits on a clean exit and rolls back on any exception, so a
precondition error raised halfway through leaves nothing behind.
"""

import logging
from typing import Callable, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.core import config
from backend.repositories.booking_store import BookingStore
from backend.repositories.slot_store import SlotStore

logger = logging.getLogger(__name__)


class PaymentRecorderProtocol(Protocol):
    def record_payment(self, booking_id: str, amount, currency: str, reference: str | None = None) -> None:
        ...


PaymentRecorderFactory = Callable[[Session], PaymentRecorderProtocol]


class UnitOfWork:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        payment_recorder_factory: PaymentRecorderFactory | None = None,
        lock_timeout_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._payment_recorder_factory = payment_recorder_factory
        self._lock_timeout_seconds = lock_timeout_seconds or config.DB_LOCK_TIMEOUT_SECONDS
        self.session: Session | None = None
        self.slots: SlotStore | None = None
        self.bookings: BookingStore | None = None
        self.payments: PaymentRecorderProtocol | None = None

    def __enter__(self) -> 'UnitOfWork':
        self.session = self._session_factory()
        try:
            self._apply_lock_timeout()
        except Exception:
            self.session.close()
            raise
        self.slots = SlotStore(self.session)
        self.bookings = BookingStore(self.session)
        if self._payment_recorder_factory is not None:
            self.payments = self._payment_recorder_factory(self.session)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self.session.close()
        return False

    def commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()
        logger.debug('Booking transaction rolled back')

    def _apply_lock_timeout(self) -> None:
        bind = self.session.get_bind()
        if bind.dialect.name != 'postgresql':
            return
        timeout_ms = int(self._lock_timeout_seconds * 1000)
        self.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
