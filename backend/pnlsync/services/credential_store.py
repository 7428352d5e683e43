"""Credential store for delegated Google OAuth tokens.

WHAT:
    Builds the consent URL, exchanges authorization codes, persists the
    encrypted token pair on the client record, and hands out a live
    (non-expired) credential, refreshing it explicitly when needed.

WHY:
    - Keeps token handling out of routers and sync services.
    - The refresh is an explicit synchronous step that persists the new
      token before the caller uses it. Google client objects are built from
      the access token alone, so no library refreshes behind our back.
    - Refresh is a per-client critical section: Google may rotate the
      refresh token, and a second concurrent refresh would burn it.

REFERENCES:
    - pnlsync/security.py (encrypt_secret / decrypt_secret)
    - pnlsync/services/client_locks.py (refresh_lock)
    - https://developers.google.com/identity/protocols/oauth2/web-server
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

import httpx
from google.oauth2.credentials import Credentials
from sqlalchemy.orm import Session

from pnlsync.deps import Settings
from pnlsync.errors import (
    AuthExchangeError,
    ClientNotFoundError,
    NotAuthenticatedError,
    ProviderUnavailableError,
    RefreshError,
)
from pnlsync.models import Client
from pnlsync.security import decrypt_secret, encrypt_secret
from pnlsync.services.client_locks import refresh_lock

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]

# Treat tokens this close to expiry as already expired
EXPIRY_SKEW = timedelta(seconds=60)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round-trip; stored expiries are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class GoogleCredential:
    """Plaintext token pair for one client, held only in memory."""

    access_token: Optional[str]
    refresh_token: Optional[str]
    expiry: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return True
        expiry = _as_utc(self.expiry)
        if expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= expiry - EXPIRY_SKEW

    def to_google_credentials(self) -> Credentials:
        """Access-token-only credentials; refresh stays with the store."""
        return Credentials(token=self.access_token)


class CredentialStore:
    """Per-client OAuth credential lifecycle.

    Usage:
        store = CredentialStore(db, get_settings())
        credential = store.live_credential(client_id)
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        http_client: Optional[httpx.Client] = None,
    ):
        self.db = db
        self.settings = settings
        # Injected client is used as-is (tests pass an httpx.MockTransport)
        self._http = http_client

    # ------------------------------------------------------------------
    # Consent flow
    # ------------------------------------------------------------------

    def authorization_url(self, client_id: UUID | str) -> str:
        """Consent URL carrying the client id as opaque `state`."""
        self._require_oauth_config()
        params = {
            "client_id": self.settings.GOOGLE_CLIENT_ID,
            "redirect_uri": self.settings.GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",  # Request refresh token
            "prompt": "consent",  # Force consent so Google re-issues the refresh token
            "include_granted_scopes": "true",
            "state": str(client_id),
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> GoogleCredential:
        """Exchange an authorization code for a token pair.

        Raises:
            AuthExchangeError: Google rejected the code or returned no access token.
            ProviderUnavailableError: Token endpoint unreachable or 5xx.
        """
        self._require_oauth_config()
        response = self._post_token_endpoint({
            "code": code,
            "redirect_uri": self.settings.GOOGLE_REDIRECT_URI,
            "grant_type": "authorization_code",
        })
        if response.status_code >= 400:
            logger.warning(
                "[CREDENTIALS] Code exchange rejected: status=%s error=%s",
                response.status_code,
                _error_code(response),
            )
            raise AuthExchangeError(f"Google rejected the authorization code ({_error_code(response)})")

        token_data = response.json()
        if not token_data.get("access_token"):
            raise AuthExchangeError("Google returned no access token")

        return GoogleCredential(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expiry=_expiry_from(token_data),
        )

    def store_credential(self, client_id: UUID | str, credential: GoogleCredential) -> None:
        """Persist a freshly exchanged credential on the client.

        Google omits the refresh token on repeat consents; the stored one is
        kept in that case.
        """
        with refresh_lock(client_id):
            client = self._get_client(client_id)
            if not credential.refresh_token and not client.google_refresh_token_enc:
                raise AuthExchangeError("Google returned no refresh token; reconnect and grant offline access")
            self._persist(client, credential)
            self.db.commit()
        logger.info("[CREDENTIALS] Stored Google credential for client %s", client_id)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def is_authenticated(self, client_id: UUID | str) -> bool:
        """Both tokens stored. Expiry is irrelevant here."""
        client = self._get_client(client_id)
        return bool(client.google_access_token_enc and client.google_refresh_token_enc)

    def live_credential(self, client_id: UUID | str, *, force_refresh: bool = False) -> GoogleCredential:
        """Return a usable credential, refreshing (once) if expired.

        `force_refresh` is used by callers whose request was rejected with 401
        even though the stored expiry looked fine (revoked or clock drift).

        Raises:
            NotAuthenticatedError: No refresh token stored, or the stored
                tokens cannot be decrypted.
            RefreshError: Google rejected the refresh token (terminal).
            ProviderUnavailableError: Token endpoint unreachable or 5xx.
        """
        client = self._get_client(client_id)
        seen = self._load(client)
        if not force_refresh and not seen.is_expired():
            return seen

        with refresh_lock(client_id):
            # A peer may have refreshed while we waited for the lock
            self.db.refresh(client)
            current = self._load(client)
            if force_refresh and current.access_token != seen.access_token and not current.is_expired():
                logger.info("[CREDENTIALS] Reusing credential refreshed concurrently for client %s", client_id)
                return current
            if not force_refresh and not current.is_expired():
                logger.info("[CREDENTIALS] Reusing credential refreshed concurrently for client %s", client_id)
                return current

            refreshed = self._refresh(client_id, current)
            self._persist(client, refreshed)
            self.db.commit()

        logger.info(
            "[CREDENTIALS] Refreshed access token for client %s (rotated=%s)",
            client_id,
            refreshed.refresh_token != current.refresh_token,
        )
        return refreshed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_oauth_config(self) -> None:
        if not self.settings.GOOGLE_CLIENT_ID or not self.settings.GOOGLE_CLIENT_SECRET:
            raise RuntimeError("Google OAuth not configured. Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET.")

    def _get_client(self, client_id: UUID | str) -> Client:
        return load_client(self.db, client_id)

    def _load(self, client: Client) -> GoogleCredential:
        if not client.google_refresh_token_enc:
            raise NotAuthenticatedError("Client not authenticated with Google. Please connect first.")
        label = f"client:{client.id}"
        try:
            access_token = (
                decrypt_secret(client.google_access_token_enc, context=f"{label}:access")
                if client.google_access_token_enc else None
            )
            refresh_token = decrypt_secret(client.google_refresh_token_enc, context=f"{label}:refresh")
        except ValueError as exc:
            # Key removed from TOKEN_ENCRYPTION_KEY or ciphertext corrupted
            raise NotAuthenticatedError(
                "Stored Google credentials cannot be decrypted. Please reconnect Google."
            ) from exc
        return GoogleCredential(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=_as_utc(client.google_token_expiry),
        )

    def _persist(self, client: Client, credential: GoogleCredential) -> None:
        label = f"client:{client.id}"
        client.google_access_token_enc = encrypt_secret(credential.access_token, context=f"{label}:access")
        if credential.refresh_token:
            client.google_refresh_token_enc = encrypt_secret(credential.refresh_token, context=f"{label}:refresh")
        client.google_token_expiry = credential.expiry
        self.db.add(client)

    def _refresh(self, client_id: UUID | str, current: GoogleCredential) -> GoogleCredential:
        self._require_oauth_config()
        response = self._post_token_endpoint({
            "refresh_token": current.refresh_token,
            "grant_type": "refresh_token",
        })
        if response.status_code >= 400:
            logger.error(
                "[CREDENTIALS] Refresh rejected for client %s: status=%s error=%s",
                client_id,
                response.status_code,
                _error_code(response),
            )
            raise RefreshError(
                f"Google rejected the refresh token ({_error_code(response)}); the client must reconnect Google"
            )

        token_data = response.json()
        if not token_data.get("access_token"):
            raise RefreshError("Google returned no access token on refresh; the client must reconnect Google")

        return GoogleCredential(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or current.refresh_token,
            expiry=_expiry_from(token_data),
        )

    def _post_token_endpoint(self, data: dict) -> httpx.Response:
        payload = {
            **data,
            "client_id": self.settings.GOOGLE_CLIENT_ID,
            "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
        }
        try:
            if self._http is not None:
                response = self._http.post(GOOGLE_TOKEN_URL, data=payload)
            else:
                with httpx.Client(timeout=self.settings.GOOGLE_HTTP_TIMEOUT_SECONDS) as http:
                    response = http.post(GOOGLE_TOKEN_URL, data=payload)
        except httpx.HTTPError as exc:
            logger.error("[CREDENTIALS] Token endpoint unreachable: %s", exc)
            raise ProviderUnavailableError("Google token endpoint unreachable") from exc

        if response.status_code >= 500:
            logger.error("[CREDENTIALS] Token endpoint returned %s", response.status_code)
            raise ProviderUnavailableError(f"Google token endpoint returned {response.status_code}")
        return response


def load_client(db: Session, client_id: UUID | str) -> Client:
    """Fetch a client or raise ClientNotFoundError (also for malformed ids)."""
    try:
        key = client_id if isinstance(client_id, UUID) else UUID(str(client_id))
    except ValueError:
        raise ClientNotFoundError(f"Client {client_id} not found") from None
    client = db.query(Client).filter(Client.id == key).first()
    if not client:
        raise ClientNotFoundError(f"Client {client_id} not found")
    return client


def _expiry_from(token_data: dict) -> Optional[datetime]:
    expires_in = token_data.get("expires_in")
    if expires_in is None:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


def _error_code(response: httpx.Response) -> str:
    """Google's short OAuth error code (e.g. invalid_grant); never the token."""
    try:
        return str(response.json().get("error", response.status_code))
    except ValueError:
        return str(response.status_code)
