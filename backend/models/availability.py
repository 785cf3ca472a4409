"""Availability model definitions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String
from backend.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Availability(Base):
    """Represents a time window a therapist offers for booking."""
    __tablename__ = "availability"

    id = Column(String(36), primary_key=True, default=_new_id)
    therapist_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    start_ts = Column(DateTime, nullable=False)
    end_ts = Column(DateTime, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    recurring_rule = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        CheckConstraint("start_ts < end_ts", name="ck_availability_window"),
        Index("idx_availability_therapist_window", "therapist_id", "start_ts", "end_ts"),
        Index("idx_availability_booked_start", "is_booked", "start_ts"),
    )
