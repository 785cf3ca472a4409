"""Booking model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, text
from backend.core.enums import BookingStatus
from backend.database import Base
from backend.models.availability import _new_id, _utcnow


class Booking(Base):
    """A client's reservation of a therapist's time window."""
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    therapist_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    # Slot currently held; null for rows written before the column existed.
    availability_id = Column(String(36), ForeignKey("availability.id", ondelete="SET NULL"), nullable=True)
    start_ts = Column(DateTime, nullable=False)
    end_ts = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index(
            "uq_bookings_active_window",
            "therapist_id",
            "start_ts",
            "end_ts",
            unique=True,
            sqlite_where=text("status <> 'CANCELLED'"),
            postgresql_where=text("status <> 'CANCELLED'"),
        ),
        Index("idx_bookings_client_start", "client_id", "start_ts"),
    )
