"""Seed a development database with users and open availability slots.

Usage:
    python -m backend.seed

Prints a bearer token per seeded user so the booking endpoints can be
exercised straight away.
"""
import logging
import sys
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backend.auth.jwt_handler import create_access_token
from backend.core.enums import ActorRole
from backend.database import Base, SessionLocal, engine
from backend.models import booking, payment  # noqa: F401  registers tables
from backend.models.availability import Availability
from backend.models.user import User

logger = logging.getLogger(__name__)

SEED_USERS = [
    ('admin@therapy-platform.com', 'Platform Administrator', ActorRole.ADMIN),
    ('dr.smith@therapy-platform.com', 'Dr. Sarah Smith', ActorRole.THERAPIST),
    ('dr.jones@therapy-platform.com', 'Dr. Michael Jones', ActorRole.THERAPIST),
    ('john.doe@example.com', 'John Doe', ActorRole.CLIENT),
    ('jane.smith@example.com', 'Jane Smith', ActorRole.CLIENT),
]
SLOT_HOURS = (9, 10, 11, 14, 15)
SESSION_LENGTH = timedelta(hours=1)


def seed_users(db: Session) -> list[User]:
    users = []
    for email, full_name, role in SEED_USERS:
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            user = User(email=email, full_name=full_name, role=role.value, verified=True)
            db.add(user)
        users.append(user)
    db.flush()
    return users


def seed_availability(db: Session, therapists: list[User], start_day: datetime) -> int:
    created = 0
    for therapist in therapists:
        for day_offset in range(5):
            day = start_day + timedelta(days=day_offset)
            for hour in SLOT_HOURS:
                start_ts = day.replace(hour=hour, minute=0, second=0, microsecond=0)
                exists = db.query(Availability).filter(
                    Availability.therapist_id == therapist.id,
                    Availability.start_ts == start_ts,
                ).first()
                if exists:
                    continue
                db.add(
                    Availability(
                        therapist_id=therapist.id,
                        start_ts=start_ts,
                        end_ts=start_ts + SESSION_LENGTH,
                        recurring_rule='weekly',
                        is_booked=False,
                    )
                )
                created += 1
    db.flush()
    return created


def main() -> int:
    Base.metadata.create_all(bind=engine)

    next_monday = datetime.now() + timedelta(days=7 - datetime.now().weekday())
    db = SessionLocal()
    try:
        users = seed_users(db)
        therapists = [user for user in users if user.role == ActorRole.THERAPIST.value]
        slot_count = seed_availability(db, therapists, next_monday)
        db.commit()
        tokens = [(user.email, user.role, create_access_token(subject=user.id, role=user.role)) for user in users]
    except Exception:
        db.rollback()
        logger.exception('Seeding failed')
        return 1
    finally:
        db.close()

    print(f'Seeded {len(users)} users and {slot_count} availability slots.')
    for email, role, token in tokens:
        print(f'{role:<10} {email:<32} {token}')
    return 0


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
