"""
Database engine + session factory.

Always initializes — defaults to SQLite for local dev, Postgres in production.
get_session() always returns a real session.
"""
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from leadqueue.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Railway injects postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

# SQLite needs different engine kwargs than Postgres
if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

# expire_on_commit=False: services hand rows back to callers after commit
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


@contextmanager
def session_scope(session=None):
    """
    Transaction helper for service functions.

    If the caller passes a session, it owns the transaction and nothing is
    committed here. Otherwise a fresh session is opened, committed on success,
    rolled back on error and always closed.
    """
    if session is not None:
        yield session
        return
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def utcnow():
    """Naive UTC timestamp. Every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
