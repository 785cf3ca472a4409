"""Payment model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from backend.core.enums import PaymentStatus
from backend.database import Base
from backend.models.availability import _new_id, _utcnow


class Payment(Base):
    """Auxiliary record of a payment taken for a booking."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_new_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
