"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine and session factory.
    Exposes a FastAPI dependency and a context manager for database access.

WHY:
    - API endpoints get a request-scoped session via `get_db()`
    - The batch runner and CLI worker open one session per client worker
      thread via `SessionLocal`, so parallel syncs never share a session

USAGE:
    from pnlsync.database import SessionLocal, get_db

    @router.get("/clients/{client_id}/google-sheets/status")
    def status(client_id: UUID, db: Session = Depends(get_db)):
        ...

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - pnlsync/services/batch_runner.py (session-per-worker consumer)
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pnlsync.utils.env import require_env


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

DATABASE_URL = require_env("DATABASE_URL")


# =============================================================================
# ENGINE
# =============================================================================

# NOTE: SQLite engines (used in tests/dev) do not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Batch workers + API requests under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in pnlsync.models to ensure a single registry across the app
from .models import Base  # noqa: E402,F401


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

