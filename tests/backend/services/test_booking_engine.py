import os
from datetime import datetime
from decimal import Decimal
from functools import partial

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.core.enums import ActorRole, BookingStatus  # noqa: E402
from backend.core.exceptions import (  # noqa: E402
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
from backend.database import Base, install_sqlite_transaction_hooks  # noqa: E402
from backend.models.availability import Availability  # noqa: E402
from backend.models.booking import Booking  # noqa: E402
from backend.models.payment import Payment  # noqa: E402
from backend.models.user import User  # noqa: E402
from backend.repositories.unit_of_work import UnitOfWork  # noqa: E402
from backend.services.authorization import Actor  # noqa: E402
from backend.services.booking_engine import BookingEngine, unit_of_work_factory  # noqa: E402

TABLES = [User.__table__, Availability.__table__, Booking.__table__, Payment.__table__]

CLIENT = Actor(id='client-1', role=ActorRole.CLIENT)
OTHER_CLIENT = Actor(id='client-2', role=ActorRole.CLIENT)
THERAPIST = Actor(id='therapist-1', role=ActorRole.THERAPIST)
ADMIN = Actor(id='admin-1', role=ActorRole.ADMIN)


def _build_session_factory(tables=TABLES):
    engine = create_engine('sqlite:///:memory:')
    install_sqlite_transaction_hooks(engine)
    Base.metadata.create_all(bind=engine, tables=tables)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _seed_world(session_factory) -> None:
    db = session_factory()
    try:
        db.add_all([
            User(id='therapist-1', email='t1@example.com', role='THERAPIST', verified=True),
            User(id='therapist-2', email='t2@example.com', role='THERAPIST', verified=True),
            User(id='client-1', email='c1@example.com', role='CLIENT'),
            User(id='client-2', email='c2@example.com', role='CLIENT'),
            User(id='admin-1', email='admin@example.com', role='ADMIN'),
        ])
        db.add_all([
            Availability(id='slot-1', therapist_id='therapist-1',
                         start_ts=datetime(2026, 3, 2, 9, 0), end_ts=datetime(2026, 3, 2, 10, 0)),
            Availability(id='slot-2', therapist_id='therapist-1',
                         start_ts=datetime(2026, 3, 2, 10, 0), end_ts=datetime(2026, 3, 2, 11, 0)),
            Availability(id='slot-3', therapist_id='therapist-2',
                         start_ts=datetime(2026, 3, 2, 9, 0), end_ts=datetime(2026, 3, 2, 10, 0)),
        ])
        db.commit()
    finally:
        db.close()


@pytest.fixture
def session_factory():
    engine, factory = _build_session_factory()
    _seed_world(factory)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def booking_engine(session_factory):
    return BookingEngine(unit_of_work_factory(session_factory))


def _slot_is_booked(session_factory, slot_id: str) -> bool:
    db = session_factory()
    try:
        return db.get(Availability, slot_id).is_booked
    finally:
        db.close()


def _booking_row(session_factory, booking_id: str) -> tuple[str, datetime, datetime, str | None]:
    db = session_factory()
    try:
        booking = db.get(Booking, booking_id)
        return booking.status, booking.start_ts, booking.end_ts, booking.availability_id
    finally:
        db.close()


def _count(session_factory, model) -> int:
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


def _book_slot_one(booking_engine):
    return booking_engine.create_booking(
        client_id='client-1',
        therapist_id='therapist-1',
        availability_id='slot-1',
        amount=Decimal('80.00'),
        currency='USD',
        payment_reference='pi_123',
    )


def test_create_booking_confirms_and_reserves_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.client_id == 'client-1'
    assert booking.start_ts == datetime(2026, 3, 2, 9, 0)
    assert booking.end_ts == datetime(2026, 3, 2, 10, 0)
    assert booking.availability_id == 'slot-1'
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_create_booking_records_payment(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    db = session_factory()
    try:
        payment = db.query(Payment).filter(Payment.booking_id == booking.id).one()
        assert payment.amount == Decimal('80.00')
        assert payment.currency == 'USD'
        assert payment.status == 'PAID'
        assert payment.reference == 'pi_123'
    finally:
        db.close()


def test_create_booking_twice_on_same_slot_conflicts(booking_engine, session_factory) -> None:
    _book_slot_one(booking_engine)

    with pytest.raises(SlotAlreadyBooked) as exception_info:
        _book_slot_one(booking_engine)

    assert exception_info.value.reason == 'slot_already_booked'
    assert _count(session_factory, Booking) == 1
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_create_booking_rejects_missing_slot(booking_engine, session_factory) -> None:
    with pytest.raises(SlotNotFound):
        booking_engine.create_booking('client-1', 'therapist-1', 'slot-404', Decimal('80'), 'USD')

    assert _count(session_factory, Booking) == 0


def test_create_booking_rejects_slot_of_other_therapist(booking_engine, session_factory) -> None:
    with pytest.raises(SlotOwnershipMismatch):
        booking_engine.create_booking('client-1', 'therapist-2', 'slot-1', Decimal('80'), 'USD')

    assert _count(session_factory, Booking) == 0
    assert _count(session_factory, Payment) == 0
    assert _slot_is_booked(session_factory, 'slot-1') is False


def test_create_booking_hits_active_window_index_when_slot_flag_is_stale(booking_engine, session_factory) -> None:
    db = session_factory()
    try:
        db.add(Booking(
            id='stale-booking',
            client_id='client-2',
            therapist_id='therapist-1',
            start_ts=datetime(2026, 3, 2, 9, 0),
            end_ts=datetime(2026, 3, 2, 10, 0),
            status='CONFIRMED',
        ))
        db.commit()
    finally:
        db.close()

    with pytest.raises(SlotAlreadyBooked):
        _book_slot_one(booking_engine)

    assert _count(session_factory, Booking) == 1
    assert _count(session_factory, Payment) == 0
    assert _slot_is_booked(session_factory, 'slot-1') is False


def test_create_booking_survives_failing_payment_recorder(session_factory) -> None:
    class FailingRecorder:
        def __init__(self, _session):
            self.calls = 0

        def record_payment(self, booking_id, amount, currency, reference=None):
            self.calls += 1
            raise RuntimeError('payment ledger offline')

    booking_engine = BookingEngine(partial(UnitOfWork, session_factory, payment_recorder_factory=FailingRecorder))

    booking = _book_slot_one(booking_engine)

    assert booking.status == BookingStatus.CONFIRMED
    assert _booking_row(session_factory, booking.id)[0] == 'CONFIRMED'
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_create_booking_survives_missing_payments_table() -> None:
    tables = [User.__table__, Availability.__table__, Booking.__table__]
    engine, factory = _build_session_factory(tables=tables)
    _seed_world(factory)
    booking_engine = BookingEngine(unit_of_work_factory(factory))

    try:
        booking = _book_slot_one(booking_engine)

        assert booking.status == BookingStatus.CONFIRMED
        assert _slot_is_booked(factory, 'slot-1') is True
        assert _booking_row(factory, booking.id)[0] == 'CONFIRMED'
    finally:
        engine.dispose()


def test_create_booking_without_payment_recorder_writes_no_payment(session_factory) -> None:
    booking_engine = BookingEngine(unit_of_work_factory(session_factory, record_payments=False))

    _book_slot_one(booking_engine)

    assert _count(session_factory, Payment) == 0
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_create_booking_reports_store_failure() -> None:
    engine = create_engine('sqlite:///:memory:')
    install_sqlite_transaction_hooks(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    booking_engine = BookingEngine(unit_of_work_factory(factory))

    try:
        with pytest.raises(StoreUnavailable) as exception_info:
            booking_engine.create_booking('client-1', 'therapist-1', 'slot-1', Decimal('80'), 'USD')
    finally:
        engine.dispose()

    assert exception_info.value.reason == 'store_unavailable'


@pytest.mark.parametrize('actor', [CLIENT, THERAPIST, ADMIN])
def test_cancel_booking_frees_slot_for_permitted_actors(booking_engine, session_factory, actor: Actor) -> None:
    booking = _book_slot_one(booking_engine)

    cancelled = booking_engine.cancel_booking(booking.id, actor)

    assert cancelled.id == booking.id
    assert cancelled.status == BookingStatus.CANCELLED
    assert _slot_is_booked(session_factory, 'slot-1') is False


def test_cancel_booking_rejects_third_party(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    with pytest.raises(NotAuthorized):
        booking_engine.cancel_booking(booking.id, OTHER_CLIENT)

    assert _booking_row(session_factory, booking.id)[0] == 'CONFIRMED'
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_cancel_booking_rejects_unknown_booking(booking_engine) -> None:
    with pytest.raises(BookingNotFound):
        booking_engine.cancel_booking('missing', ADMIN)


def test_second_cancel_does_not_free_slot_rebooked_by_someone_else(booking_engine, session_factory) -> None:
    first = _book_slot_one(booking_engine)
    booking_engine.cancel_booking(first.id, CLIENT)
    booking_engine.create_booking('client-2', 'therapist-1', 'slot-1', Decimal('80'), 'USD')

    with pytest.raises(BookingNotActive) as exception_info:
        booking_engine.cancel_booking(first.id, CLIENT)

    assert exception_info.value.reason == 'booking_not_active'
    assert _booking_row(session_factory, first.id)[0] == 'CANCELLED'
    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_cancel_booking_tolerates_deleted_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)
    db = session_factory()
    try:
        db.delete(db.get(Availability, 'slot-1'))
        db.commit()
    finally:
        db.close()

    cancelled = booking_engine.cancel_booking(booking.id, CLIENT)

    assert cancelled.status == BookingStatus.CANCELLED


def test_cancel_booking_matches_slot_by_window_without_direct_reference(booking_engine, session_factory) -> None:
    db = session_factory()
    try:
        db.get(Availability, 'slot-2').is_booked = True
        db.add(Booking(
            id='legacy-booking',
            client_id='client-1',
            therapist_id='therapist-1',
            start_ts=datetime(2026, 3, 2, 10, 0),
            end_ts=datetime(2026, 3, 2, 11, 0),
            status='CONFIRMED',
        ))
        db.commit()
    finally:
        db.close()

    booking_engine.cancel_booking('legacy-booking', CLIENT)

    assert _slot_is_booked(session_factory, 'slot-2') is False


def test_reschedule_booking_moves_reservation(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    moved = booking_engine.reschedule_booking(booking.id, 'slot-2', CLIENT)

    assert moved.id == booking.id
    assert moved.status == BookingStatus.RESCHEDULED
    assert moved.start_ts == datetime(2026, 3, 2, 10, 0)
    assert moved.end_ts == datetime(2026, 3, 2, 11, 0)
    assert _slot_is_booked(session_factory, 'slot-1') is False
    assert _slot_is_booked(session_factory, 'slot-2') is True
    assert _booking_row(session_factory, booking.id) == (
        'RESCHEDULED',
        datetime(2026, 3, 2, 10, 0),
        datetime(2026, 3, 2, 11, 0),
        'slot-2',
    )


def test_reschedule_booking_rejects_other_therapists_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    with pytest.raises(SlotTherapistMismatch):
        booking_engine.reschedule_booking(booking.id, 'slot-3', CLIENT)

    assert _booking_row(session_factory, booking.id) == (
        'CONFIRMED',
        datetime(2026, 3, 2, 9, 0),
        datetime(2026, 3, 2, 10, 0),
        'slot-1',
    )
    assert _slot_is_booked(session_factory, 'slot-1') is True
    assert _slot_is_booked(session_factory, 'slot-3') is False


def test_reschedule_booking_rejects_booked_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)
    booking_engine.create_booking('client-2', 'therapist-1', 'slot-2', Decimal('80'), 'USD')

    with pytest.raises(NewSlotAlreadyBooked):
        booking_engine.reschedule_booking(booking.id, 'slot-2', CLIENT)

    assert _slot_is_booked(session_factory, 'slot-1') is True
    assert _booking_row(session_factory, booking.id)[0] == 'CONFIRMED'


def test_reschedule_booking_rejects_current_slot(booking_engine) -> None:
    booking = _book_slot_one(booking_engine)

    with pytest.raises(NewSlotAlreadyBooked):
        booking_engine.reschedule_booking(booking.id, 'slot-1', CLIENT)


def test_reschedule_booking_rejects_missing_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    with pytest.raises(NewSlotNotFound):
        booking_engine.reschedule_booking(booking.id, 'slot-404', CLIENT)

    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_reschedule_booking_checks_authorization_before_slot(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)

    with pytest.raises(NotAuthorized):
        booking_engine.reschedule_booking(booking.id, 'slot-404', OTHER_CLIENT)

    assert _slot_is_booked(session_factory, 'slot-1') is True


def test_rescheduled_booking_is_terminal(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)
    booking_engine.reschedule_booking(booking.id, 'slot-2', CLIENT)

    with pytest.raises(BookingNotActive):
        booking_engine.reschedule_booking(booking.id, 'slot-1', CLIENT)
    with pytest.raises(BookingNotActive):
        booking_engine.cancel_booking(booking.id, ADMIN)

    assert _slot_is_booked(session_factory, 'slot-2') is True


def test_reschedule_cancelled_booking_is_rejected(booking_engine, session_factory) -> None:
    booking = _book_slot_one(booking_engine)
    booking_engine.cancel_booking(booking.id, CLIENT)

    with pytest.raises(BookingNotActive):
        booking_engine.reschedule_booking(booking.id, 'slot-2', CLIENT)

    assert _slot_is_booked(session_factory, 'slot-2') is False


def test_get_booking_is_limited_to_participants(booking_engine) -> None:
    booking = _book_slot_one(booking_engine)

    assert booking_engine.get_booking(booking.id, THERAPIST).id == booking.id
    with pytest.raises(NotAuthorized):
        booking_engine.get_booking(booking.id, OTHER_CLIENT)
    with pytest.raises(BookingNotFound):
        booking_engine.get_booking('missing', ADMIN)
