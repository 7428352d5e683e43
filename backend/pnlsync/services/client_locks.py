"""Per-client mutexes for the refresh, sync and provisioning critical sections.

WHAT:
    A registry of `threading.Lock` objects keyed by (purpose, client id).

WHY:
    - Google rotates refresh tokens; two concurrent refreshes for one client
      would invalidate the first caller's token.
    - Sheet sync is clear-then-write; two overlapping syncs for one client
      could interleave and publish a half-cleared report.
    - Two overlapping provisioning calls would each create a spreadsheet.
    Different clients never contend on the same lock.

NOTE:
    Locks are process-local. Deployments running several API/worker
    processes against the same clients must route batch runs through a
    single process (the cron endpoint or the CLI worker).

REFERENCES:
    - pnlsync/services/credential_store.py (refresh_lock)
    - pnlsync/services/sheet_sync_service.py (sync_lock)
    - pnlsync/services/sheet_provisioner.py (provision_lock)
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, Tuple
from uuid import UUID


class KeyedLocks:
    """Lazily created lock per key, safe to call from many threads."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)

    def get(self, purpose: str, client_id: UUID | str) -> threading.Lock:
        key = (purpose, _canonical(client_id))
        with self._guard:
            return self._locks[key]


def _canonical(client_id: UUID | str) -> str:
    """Same key for a UUID and any spelling of its string form."""
    try:
        return str(UUID(str(client_id)))
    except ValueError:
        return str(client_id)


_registry = KeyedLocks()


def refresh_lock(client_id: UUID | str) -> threading.Lock:
    """Lock guarding the OAuth refresh for one client."""
    return _registry.get("refresh", client_id)


def sync_lock(client_id: UUID | str) -> threading.Lock:
    """Lock guarding the clear-and-rewrite of one client's report."""
    return _registry.get("sync", client_id)


def provision_lock(client_id: UUID | str) -> threading.Lock:
    """Lock guarding the creation of one client's report sheet."""
    return _registry.get("provision", client_id)
