# campus_helpdesk/backend/app/db.py
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in environment/.env")

_connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # Dispatcher and request handlers share the engine across threads
    _connect_args["check_same_thread"] = False

engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def get_db():
    """FastAPI dependency to provide DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db):
    """
    Run a block as one unit of work on an existing session.

    Commits when the block finishes, rolls back and re-raises otherwise.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
