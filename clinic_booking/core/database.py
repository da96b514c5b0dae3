from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Generator, Iterator
import logging
import redis

from .config import settings
from .exceptions import ConflictError, TransientError

logger = logging.getLogger(__name__)

DATABASE_URL = settings.get_database_url

if DATABASE_URL.startswith("sqlite"):
    # SQLite is only used for local runs and tests; sessions cross threads there
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    # PostgreSQL database setup with appropriate connection pool settings
    engine = create_engine(
        DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis setup - mock for testing
if settings.TESTING:
    # Use a simple dict-based mock for Redis in tests
    class RedisMock:
        def __init__(self):
            self.data = {}

        def setex(self, key, time, value):
            self.data[key] = str(value)
            return True

        def get(self, key):
            return self.data.get(key)

        def incr(self, key):
            try:
                self.data[key] = str(int(self.data.get(key, 0)) + 1)
            except ValueError:
                self.data[key] = "1"
            return int(self.data[key])

    redis_client = RedisMock()
else:
    # Real Redis client for production
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Run a block as one transaction: commit when it finishes, roll back on any error.

    Storage-level failures are translated into the booking error taxonomy so the
    caller never sees a half-applied slot/appointment change.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Integrity violation, transaction rolled back: {exc.orig}")
        raise ConflictError("The slot is already taken by another appointment") from exc
    except (OperationalError, DisconnectionError, PoolTimeoutError) as exc:
        db.rollback()
        logger.error(f"Storage failure, transaction rolled back: {exc}")
        raise TransientError() from exc
    except Exception:
        db.rollback()
        raise

# Database initialization
def init_db():
    """Initialize database tables."""
    from ..models import appointment, doctor, patient, slot, user  # noqa: F401
    Base.metadata.create_all(bind=engine)
