"""Dependency providers and settings management."""

import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import SessionLocal, get_db


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:3000"

    # Google OAuth client (web application type)
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/integrations/google/callback"
    GOOGLE_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Shared secret for the scheduler hitting /cron/sync-google-sheets
    CRON_SECRET: Optional[str] = None

    # Sync behaviour
    DEFAULT_SYNC_DAYS: int = 30
    SYNC_LOCK_TIMEOUT_SECONDS: float = 120.0  # also bounds the wait for a provisioning lock
    BATCH_MAX_WORKERS: int = 4

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_credential_store(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    from .services.credential_store import CredentialStore
    return CredentialStore(db, settings)


def get_provisioner(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    from .services.credential_store import CredentialStore
    from .services.sheet_provisioner import SpreadsheetProvisioner
    return SpreadsheetProvisioner(db, CredentialStore(db, settings), settings)


def get_sync_engine(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    from .services.credential_store import CredentialStore
    from .services.sheet_sync_service import SyncEngine
    return SyncEngine(db, CredentialStore(db, settings), settings)


def get_batch_runner(settings: Settings = Depends(get_settings)):
    """Batch runner opens its own session per client worker."""
    from .services.batch_runner import BatchRunner
    return BatchRunner(SessionLocal, settings)


def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject cron calls that do not carry `Bearer <CRON_SECRET>`.

    An unset CRON_SECRET rejects every request rather than opening the endpoint.
    """
    expected = settings.CRON_SECRET
    if not expected or not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not secrets.compare_digest(authorization.encode("utf-8"), f"Bearer {expected}".encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
