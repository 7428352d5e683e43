"""Tests for the real Google client stack (googleapiclient + AuthorizedHttp).

WHAT:
    Drives ReportSheetsClient through SyncEngine and SpreadsheetProvisioner
    with `httplib2.Http.request` patched, so a 401 travels the same path it
    takes against Google: the credential store performs the one refresh,
    and failures come back as PnlSyncError subclasses.

REFERENCES:
    pnlsync/services/sheets_client.py
    pnlsync/services/sheet_sync_service.py
    pnlsync/services/sheet_provisioner.py
"""

import json

import httplib2
import pytest

from pnlsync.errors import ProvisionError, SyncWriteError
from pnlsync.services.sheet_provisioner import SpreadsheetProvisioner
from pnlsync.services.sheet_sync_service import SyncEngine
from pnlsync.services.sheets_client import ReportSheetsClient

UNAUTHORIZED = (401, {"error": {"code": 401, "message": "Request had invalid authentication credentials."}})
OK = (200, {})


class ScriptedGoogleHttp:
    """Answers Google API requests from a queue; the last answer repeats."""

    def __init__(self):
        self.requests = []
        self._answers = []

    def answer(self, *answers) -> None:
        self._answers.extend(answers)

    def handle(self, uri, method, headers):
        self.requests.append((method, uri, (headers or {}).get("authorization")))
        status, payload = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        return httplib2.Response({"status": status}), json.dumps(payload).encode("utf-8")

    def bearer_tokens(self):
        return [auth for _, _, auth in self.requests]


@pytest.fixture
def google_http(monkeypatch) -> ScriptedGoogleHttp:
    scripted = ScriptedGoogleHttp()

    def fake_request(http, uri, method="GET", body=None, headers=None, **kwargs):
        return scripted.handle(uri, method, headers)

    monkeypatch.setattr(httplib2.Http, "request", fake_request)
    return scripted


@pytest.fixture
def engine(test_db_session, credential_store, settings):
    return SyncEngine(test_db_session, credential_store, settings, sheets_factory=ReportSheetsClient)


@pytest.fixture
def provisioner(test_db_session, credential_store, settings):
    return SpreadsheetProvisioner(test_db_session, credential_store, settings, sheets_factory=ReportSheetsClient)


def test_rejected_token_is_refreshed_by_the_store_and_retried(
    engine, make_client, google_http, token_endpoint, test_db_session
):
    acme = make_client()
    google_http.answer(UNAUTHORIZED, OK)

    assert engine.sync(acme.id) == 0

    assert token_endpoint.grant_types() == ["refresh_token"]
    assert google_http.bearer_tokens() == ["Bearer stored-access", "Bearer refreshed-access-1"]
    assert all(":clear" in uri for _, uri, _ in google_http.requests)
    test_db_session.expire_all()
    assert acme.last_synced_at is not None


def test_second_rejection_is_a_sync_write_error(engine, make_client, google_http, token_endpoint, test_db_session):
    acme = make_client()
    google_http.answer(UNAUTHORIZED)

    with pytest.raises(SyncWriteError):
        engine.sync(acme.id)

    assert token_endpoint.grant_types() == ["refresh_token"]
    assert len(google_http.requests) == 2
    test_db_session.expire_all()
    assert acme.last_synced_at is None


def test_rejection_after_create_deletes_the_half_built_sheet(
    provisioner, make_client, google_http, token_endpoint, test_db_session
):
    acme = make_client(provisioned=False)
    created = {
        "spreadsheetId": "real-sheet-1",
        "spreadsheetUrl": "https://docs.google.com/spreadsheets/d/real-sheet-1/edit",
        "sheets": [{"properties": {"sheetId": 0, "title": "Daily P&L"}}],
    }
    google_http.answer((200, created), UNAUTHORIZED)

    with pytest.raises(ProvisionError):
        provisioner.create(acme.id)

    assert token_endpoint.grant_types() == ["refresh_token"]
    methods = [method for method, _, _ in google_http.requests]
    assert methods[0] == "POST"
    assert methods[-1] == "DELETE"
    assert "real-sheet-1" in google_http.requests[-1][1]
    test_db_session.expire_all()
    assert acme.google_sheet_id is None
