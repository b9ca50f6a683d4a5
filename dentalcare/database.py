from datetime import date
from threading import Lock

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from dentalcare.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

BOOKING_LOCK_STRIPES = 64

_schema_lock = Lock()
_follow_up_schema_checked = False

_booking_locks = tuple(Lock() for _ in range(BOOKING_LOCK_STRIPES))


def ensure_follow_up_schema() -> None:
    """Create any missing follow-up table or index once per process.

    Covers a startup that could not reach the database.
    """
    global _follow_up_schema_checked

    if _follow_up_schema_checked:
        return

    with _schema_lock:
        if _follow_up_schema_checked:
            return

        Base.metadata.create_all(bind=engine, checkfirst=True)
        _follow_up_schema_checked = True


def booking_lock(doctor_id: int, day: date) -> Lock:
    """Process-local lock serializing capacity checks for one doctor and day.

    Keys share a fixed pool of locks, so unrelated days may occasionally wait on each other.
    """
    return _booking_locks[hash((doctor_id, day)) % BOOKING_LOCK_STRIPES]
