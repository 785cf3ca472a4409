"""User model definitions."""

from sqlalchemy import Boolean, Column, String
from backend.core.enums import ActorRole
from backend.database import Base
from backend.models.availability import _new_id


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String, nullable=False, default=ActorRole.CLIENT.value)  # CLIENT/THERAPIST/ADMIN
    verified = Column(Boolean, default=False)
