"""Best-effort payment bookkeeping attached to a booking."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from backend.core.enums import PaymentStatus
from backend.models.payment import Payment

logger = logging.getLogger(__name__)


class SqlPaymentRecorder:
    """Writes a Payment row inside a SAVEPOINT of the enclosing transaction.

    A failure rolls back only the savepoint and is re-raised; the caller
    decides whether to tolerate it.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def record_payment(
        self,
        booking_id: str,
        amount: Decimal | float,
        currency: str,
        reference: str | None = None,
    ) -> None:
        with self.session.begin_nested():
            payment = Payment(
                booking_id=booking_id,
                amount=Decimal(str(amount)),
                currency=currency,
                status=PaymentStatus.PAID.value,
                reference=reference,
            )
            self.session.add(payment)
            self.session.flush()

        logger.debug('Recorded payment %s for booking %s', payment.id, booking_id)
