"""Pytest configuration for pnlsync service and HTTP tests

WHAT: Shared fixtures: SQLite database, settings, a fake Google token
      endpoint (httpx.MockTransport), fake Sheets/Drive clients, and model
      factories for clients, cost profiles and daily metrics
WHY: Exercise the real services end to end without network access
REFERENCES:
    - pnlsync/main.py: FastAPI application
    - pnlsync/database.py: Database configuration
    - pnlsync/deps.py: Dependency injection
    - pnlsync/services/sheets_client.py: Interface the fakes mirror
"""

import json
import os
import sys
import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator
from urllib.parse import parse_qs

import httplib2
import httpx
import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
# Must be URL-safe base64-encoded 32-byte string (pnlsync.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from pnlsync.deps import Settings  # noqa: E402
from pnlsync.database import Base  # noqa: E402
from pnlsync.models import Client, DailyMetric, FinancialProfile, PlatformEnum  # noqa: E402
from pnlsync.report_layout import DATA_RANGE, DATA_START, HEADER_RANGE  # noqa: E402
from pnlsync.security import encrypt_secret  # noqa: E402
from pnlsync.services.credential_store import CredentialStore  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine(tmp_path):
    """File-backed SQLite so worker threads each get their own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pnlsync.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        GOOGLE_CLIENT_ID="test-google-client-id",
        GOOGLE_CLIENT_SECRET="test-google-client-secret",
        GOOGLE_REDIRECT_URI="http://api.test/integrations/google/callback",
        FRONTEND_URL="http://frontend.test",
        CRON_SECRET="test-cron-secret",
        SYNC_LOCK_TIMEOUT_SECONDS=0.2,
        BATCH_MAX_WORKERS=2,
    )


# ============================================================================
# Fake Google token endpoint
# ============================================================================

class FakeTokenEndpoint:
    """Scripted oauth2.googleapis.com/token.

    Queue responses with `respond(status, payload)`; once the queue is empty
    every refresh succeeds with a new numbered access token.
    """

    def __init__(self):
        self.requests = []
        self._queue = []
        self._lock = threading.Lock()
        self.delay = 0.0

    def respond(self, status_code: int, payload: dict) -> None:
        self._queue.append((status_code, payload))

    def grant_types(self):
        return [r["grant_type"] for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}
        with self._lock:
            self.requests.append(form)
            number = len(self.requests)
            queued = self._queue.pop(0) if self._queue else None
        if self.delay:
            threading.Event().wait(self.delay)
        if queued is not None:
            status_code, payload = queued
            return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))
        return httpx.Response(200, json={"access_token": f"refreshed-access-{number}", "expires_in": 3600})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    return FakeTokenEndpoint()


@pytest.fixture
def credential_store(test_db_session, settings, token_endpoint) -> CredentialStore:
    return CredentialStore(test_db_session, settings, http_client=token_endpoint.client())


# ============================================================================
# Fake Sheets / Drive
# ============================================================================

def make_http_error(status: int, reason: str = "error") -> HttpError:
    content = json.dumps({"error": {"code": status, "message": reason}}).encode("utf-8")
    return HttpError(httplib2.Response({"status": status}), content, uri="https://sheets.googleapis.com/v4/test")


class FakeGoogle:
    """State shared by every FakeSheetsClient the factory builds.

    `sheets[spreadsheet_id]` holds {"header": [...], "data": [[...]], "shared": [...]}.
    `fail(method, exc, ...)` queues exceptions raised by the next calls to `method`.
    """

    def __init__(self):
        self.calls = []
        self.tokens = []
        self.sheets = {}
        self.deleted = []
        self.batch_requests = []
        self._failures = {}
        self._counter = 0
        self._lock = threading.Lock()

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures.setdefault(method, []).extend(errors)

    def factory(self, credential, timeout=None):
        self.tokens.append(credential.access_token)
        return FakeSheetsClient(self, credential.access_token)

    def record(self, method: str, *args) -> None:
        with self._lock:
            self.calls.append((method,) + args)
            pending = self._failures.get(method)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def methods(self):
        return [call[0] for call in self.calls]

    def next_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"sheet-{self._counter}"


class FakeSheetsClient:
    def __init__(self, google: FakeGoogle, access_token: str):
        self._google = google
        self.access_token = access_token

    def create_spreadsheet(self, title, tab_title, frozen_rows=1):
        self._google.record("create_spreadsheet", title, tab_title)
        spreadsheet_id = self._google.next_id()
        self._google.sheets[spreadsheet_id] = {"title": title, "header": None, "data": [], "shared": []}
        return {
            "spreadsheet_id": spreadsheet_id,
            "spreadsheet_url": f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit",
            "tab_id": 0,
        }

    def batch_update(self, spreadsheet_id, requests):
        self._google.record("batch_update", spreadsheet_id)
        self._google.batch_requests.extend(requests)

    def write_range(self, spreadsheet_id, range_name, values, value_input_option="USER_ENTERED"):
        self._google.record("write_range", spreadsheet_id, range_name, value_input_option)
        sheet = self._google.sheets.setdefault(spreadsheet_id, {"header": None, "data": [], "shared": []})
        if range_name == HEADER_RANGE:
            sheet["header"] = [list(row) for row in values][0]
        elif range_name == DATA_START:
            sheet["data"] = [list(row) for row in values]
        else:
            raise AssertionError(f"unexpected range {range_name}")

    def clear_range(self, spreadsheet_id, range_name):
        self._google.record("clear_range", spreadsheet_id, range_name)
        assert range_name == DATA_RANGE
        sheet = self._google.sheets.setdefault(spreadsheet_id, {"header": None, "data": [], "shared": []})
        sheet["data"] = []

    def share_with(self, file_id, email, role="writer"):
        self._google.record("share_with", file_id, email, role)
        self._google.sheets[file_id]["shared"].append((email, role))

    def delete_file(self, file_id):
        self._google.record("delete_file", file_id)
        self._google.deleted.append(file_id)
        self._google.sheets.pop(file_id, None)


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def http_error():
    return make_http_error


# ============================================================================
# Model factories
# ============================================================================

@pytest.fixture
def make_client(test_db_session):
    """Create a Client; `authenticated`/`provisioned` fill the Google fields."""

    def _make(
        name: str = "Acme Store",
        email: str = "owner@acme.test",
        authenticated: bool = True,
        provisioned: bool = True,
        expired: bool = False,
        auto_sync_enabled: bool = True,
        profile: dict | None = None,
    ) -> Client:
        client = Client(name=name, email=email, auto_sync_enabled=auto_sync_enabled)
        test_db_session.add(client)
        test_db_session.flush()

        if authenticated:
            client.google_access_token_enc = encrypt_secret("stored-access", context="test")
            client.google_refresh_token_enc = encrypt_secret("stored-refresh", context="test")
            offset = timedelta(minutes=-5) if expired else timedelta(hours=1)
            client.google_token_expiry = datetime.now(timezone.utc) + offset
        if provisioned:
            client.google_sheet_id = f"existing-{client.id.hex[:8]}"
            client.google_sheet_url = f"https://docs.google.com/spreadsheets/d/{client.google_sheet_id}/edit"
        if profile is not None:
            test_db_session.add(FinancialProfile(client_id=client.id, **profile))

        test_db_session.commit()
        return client

    return _make


@pytest.fixture
def add_metric(test_db_session):
    def _add(client: Client, day: date, revenue, orders: int, ad_spend, platform=PlatformEnum.google) -> DailyMetric:
        metric = DailyMetric(
            client_id=client.id,
            date=day,
            platform=platform,
            revenue=Decimal(str(revenue)),
            orders=orders,
            ad_spend=Decimal(str(ad_spend)),
        )
        test_db_session.add(metric)
        test_db_session.commit()
        return metric

    return _add


STANDARD_PROFILE = {
    "cogs_percentage": Decimal("30"),
    "payment_processing_fee_percentage": Decimal("2.9"),
    "merchant_account_fee_flat": Decimal("0.30"),
    "shipping_cost_per_order": Decimal("8"),
    "fulfillment_cost_per_order": Decimal("9"),
    "target_margin_percentage": Decimal("20"),
}


@pytest.fixture
def standard_profile() -> dict:
    """AOV 100 / CPA 20 with this profile gives cost 50.20, margin 29.80%."""
    return dict(STANDARD_PROFILE)


# ============================================================================
# Application & HTTP client
# ============================================================================

@pytest.fixture
def app(test_db_session, session_factory, settings, token_endpoint, fake_google):
    """FastAPI app wired to the test database, token endpoint and fake Sheets."""
    from pnlsync import deps
    from pnlsync.database import get_db
    from pnlsync.main import create_app
    from pnlsync.services.batch_runner import BatchRunner
    from pnlsync.services.sheet_provisioner import SpreadsheetProvisioner
    from pnlsync.services.sheet_sync_service import SyncEngine

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    def store_for(db):
        return CredentialStore(db, settings, http_client=token_endpoint.client())

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[deps.get_settings] = lambda: settings
    test_app.dependency_overrides[deps.get_credential_store] = lambda: store_for(test_db_session)
    test_app.dependency_overrides[deps.get_provisioner] = lambda: SpreadsheetProvisioner(
        test_db_session, store_for(test_db_session), settings, sheets_factory=fake_google.factory
    )
    test_app.dependency_overrides[deps.get_sync_engine] = lambda: SyncEngine(
        test_db_session, store_for(test_db_session), settings, sheets_factory=fake_google.factory
    )
    test_app.dependency_overrides[deps.get_batch_runner] = lambda: BatchRunner(
        session_factory,
        settings,
        engine_factory=lambda db: SyncEngine(db, store_for(db), settings, sheets_factory=fake_google.factory),
    )

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)
