"""Google OAuth 2.0 flow endpoints.

WHAT:
    Sends a client to Google's consent screen and completes the callback by
    exchanging the code and storing the encrypted token pair.

WHY:
    Each client authorizes access to their own Google Drive; the report
    sheet is created and written with that delegated credential.

REFERENCES:
    - pnlsync/services/credential_store.py
    - https://developers.google.com/identity/protocols/oauth2/web-server
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from pnlsync.deps import Settings, get_credential_store, get_settings
from pnlsync.errors import PnlSyncError
from pnlsync.services.credential_store import CredentialStore, load_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/google", tags=["Google OAuth"])


@router.get("/auth")
def google_authorize(
    client_id: Optional[str] = Query(None, alias="clientId"),
    store: CredentialStore = Depends(get_credential_store),
):
    """
    Redirect to the Google consent screen for one client.

    WHAT:
        Builds the consent URL with the client id as `state`.
    WHY:
        The callback has no session; `state` tells it which client consented.
    """
    if not client_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Client ID is required")

    client = load_client(store.db, client_id)
    try:
        auth_url = store.authorization_url(client.id)
    except RuntimeError as exc:
        logger.error("[GOOGLE_OAUTH] %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

    logger.info("[GOOGLE_OAUTH] Redirecting client %s to Google consent screen", client.id)
    return RedirectResponse(url=auth_url)


@router.get("/callback")
def google_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    state: Optional[str] = Query(None),  # client_id
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
):
    """
    Handle the OAuth callback from Google.

    Redirects back to the dashboard either way; the failure redirect carries
    a fixed error code only.
    """
    failure_url = f"{settings.FRONTEND_URL}/dashboard?error=oauth_failed"

    # Handle errors from Google (user denied consent etc.)
    if error:
        logger.warning("[GOOGLE_OAUTH] Google returned error: %s", error)
        return RedirectResponse(url=failure_url)

    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code or state")

    try:
        client = load_client(store.db, state)
        credential = store.exchange_code(code)
        store.store_credential(client.id, credential)
    except PnlSyncError as exc:
        logger.error("[GOOGLE_OAUTH] Callback failed for state %s: %s: %s", state, exc.kind, exc.message)
        return RedirectResponse(url=failure_url)
    except RuntimeError as exc:
        logger.error("[GOOGLE_OAUTH] Callback failed for state %s: %s", state, exc)
        return RedirectResponse(url=failure_url)

    logger.info("[GOOGLE_OAUTH] Client %s connected Google", client.id)
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/dashboard/clients/{client.id}?connected=true")
