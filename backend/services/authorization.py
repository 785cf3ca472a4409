from dataclasses import dataclass

from backend.core.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole


def can_manage_booking(actor: Actor, booking) -> bool:
    """Admins, and the booking's own client or therapist, may change it."""
    if actor.role == ActorRole.ADMIN:
        return True
    return actor.id in (booking.client_id, booking.therapist_id)
