"""Slot store: reads and compare-and-set writes on availability rows."""

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.models.availability import Availability


class SlotStateConflict(Exception):
    """The slot's reservation flag did not hold the value the caller expected."""

    def __init__(self, slot_id: str, expected_booked: bool) -> None:
        self.slot_id = slot_id
        self.expected_booked = expected_booked
        super().__init__(f'Slot {slot_id} expected is_booked={expected_booked}')


class SlotStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_slot(self, slot_id: str, for_update: bool = False) -> Availability | None:
        query = self.session.query(Availability).filter(Availability.id == slot_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def set_booked(self, slot_id: str, is_booked: bool) -> Availability:
        """Flip ``is_booked`` only if it currently holds the opposite value.

        The guard lives in the UPDATE's WHERE clause, so two transactions
        racing for the same slot cannot both see a row count of one.
        """
        result = self.session.execute(
            update(Availability)
            .where(Availability.id == slot_id, Availability.is_booked.is_(not is_booked))
            .values(is_booked=is_booked)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SlotStateConflict(slot_id, expected_booked=not is_booked)

        return self.session.get(Availability, slot_id, populate_existing=True)

    def find_slot_by_therapist_and_window(
        self,
        therapist_id: str,
        start_ts: datetime,
        end_ts: datetime,
    ) -> Availability | None:
        # Booked slots first: when windows collide, the held one is the match.
        return (
            self.session.query(Availability)
            .filter(
                Availability.therapist_id == therapist_id,
                Availability.start_ts == start_ts,
                Availability.end_ts == end_ts,
            )
            .order_by(Availability.is_booked.desc(), Availability.created_at.asc())
            .first()
        )
