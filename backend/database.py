import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./therapy_booking.db")


def is_sqlite_url(url: str) -> bool:
    return url.startswith('sqlite')


def install_sqlite_transaction_hooks(target: Engine) -> None:
    """Make pysqlite honour real transactions and savepoints.

    pysqlite defers BEGIN until the first DML statement and does not know
    about SAVEPOINT, so SQLAlchemy emits BEGIN itself. IMMEDIATE takes the
    write lock up front, serializing writers for the life of the transaction.
    """

    @event.listens_for(target, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target, 'begin')
    def _begin_immediate(connection) -> None:
        connection.exec_driver_sql('BEGIN IMMEDIATE')


def build_engine(url: str) -> Engine:
    if is_sqlite_url(url):
        built = create_engine(
            url,
            connect_args={'check_same_thread': False, 'timeout': config.DB_LOCK_TIMEOUT_SECONDS},
        )
        install_sqlite_transaction_hooks(built)
        return built
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_booking_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability')}
        migration_steps = [
            ('recurring_rule', 'ALTER TABLE availability ADD COLUMN recurring_rule VARCHAR'),
            ('created_at', 'ALTER TABLE availability ADD COLUMN created_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_therapist_window '
                    'ON availability(therapist_id, start_ts, end_ts)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_booked_start ON availability(is_booked, start_ts)')
            )

        _availability_schema_checked = True


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('availability_id', 'ALTER TABLE bookings ADD COLUMN availability_id VARCHAR(36)'),
            ('updated_at', 'ALTER TABLE bookings ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_window '
                    "ON bookings(therapist_id, start_ts, end_ts) WHERE status <> 'CANCELLED'"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_client_start ON bookings(client_id, start_ts)')
            )

        _booking_schema_checked = True
