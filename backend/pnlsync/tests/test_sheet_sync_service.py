"""Tests for the clear-and-rewrite report sync.

WHAT:
    Row content and order, idempotence, watermark handling on failure,
    401 refresh-and-retry, per-client serialization, preconditions.

REFERENCES:
    pnlsync/services/sheet_sync_service.py
    pnlsync/services/metrics_aggregator.py
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from pnlsync.errors import (
    NotAuthenticatedError,
    NotProvisionedError,
    RefreshError,
    SyncInProgressError,
    SyncWriteError,
)
from pnlsync.models import PlatformEnum
from pnlsync.report_layout import DATA_RANGE
from pnlsync.services.client_locks import sync_lock
from pnlsync.services.sheet_sync_service import SyncEngine


@pytest.fixture
def engine(test_db_session, credential_store, settings, fake_google):
    return SyncEngine(test_db_session, credential_store, settings, sheets_factory=fake_google.factory)


@pytest.fixture
def acme(make_client, add_metric, standard_profile):
    client = make_client(profile=standard_profile)
    today = date.today()
    add_metric(client, today - timedelta(days=1), "1000", 10, "200")
    add_metric(client, today - timedelta(days=2), "600", 6, "100", platform=PlatformEnum.google)
    add_metric(client, today - timedelta(days=2), "400", 4, "100", platform=PlatformEnum.meta)
    add_metric(client, today - timedelta(days=60), "999", 9, "99")  # outside the default window
    return client


def test_sync_writes_rows_ascending_and_advances_watermark(engine, acme, fake_google, test_db_session):
    before = datetime.now(timezone.utc)

    rows_written = engine.sync(acme.id)

    assert rows_written == 2
    data = fake_google.sheets[acme.google_sheet_id]["data"]
    today = date.today()
    assert [row[0] for row in data] == [
        (today - timedelta(days=2)).isoformat(),
        (today - timedelta(days=1)).isoformat(),
    ]
    # Two platforms on one date are summed before the formulas run
    assert data[0][1:] == ["1000.00", 10, "100.00", "200.00", "5.00", "20.00", "29.80", "29.80", "Good"]

    test_db_session.expire_all()
    assert acme.last_synced_at.replace(tzinfo=timezone.utc) >= before - timedelta(seconds=1)


def test_sync_clears_before_writing(engine, acme, fake_google):
    engine.sync(acme.id)
    assert fake_google.methods() == ["clear_range", "write_range"]
    assert fake_google.calls[0][2] == DATA_RANGE


def test_sync_is_idempotent(engine, acme, fake_google):
    engine.sync(acme.id)
    first = fake_google.sheets[acme.google_sheet_id]["data"]
    engine.sync(acme.id)
    second = fake_google.sheets[acme.google_sheet_id]["data"]
    assert first == second


def test_sync_without_metrics_clears_and_writes_nothing(engine, make_client, fake_google):
    empty = make_client()
    fake_google.sheets[empty.google_sheet_id] = {"header": None, "data": [["stale"]], "shared": []}

    assert engine.sync(empty.id) == 0
    assert fake_google.methods() == ["clear_range"]
    assert fake_google.sheets[empty.google_sheet_id]["data"] == []


def test_window_days_limits_rows(engine, acme):
    assert engine.sync(acme.id, window_days=1) == 1
    assert engine.sync(acme.id, window_days=90) == 3


@pytest.mark.parametrize("window_days", [0, -1, 366])
def test_window_days_out_of_range(engine, acme, window_days):
    with pytest.raises(ValueError):
        engine.sync(acme.id, window_days=window_days)


def test_write_failure_raises_and_keeps_watermark(engine, acme, fake_google, http_error, test_db_session):
    fake_google.fail("write_range", http_error(500, "backend error"))

    with pytest.raises(SyncWriteError):
        engine.sync(acme.id)

    test_db_session.expire_all()
    assert acme.last_synced_at is None


def test_clear_failure_raises_sync_write_error(engine, acme, fake_google, http_error):
    fake_google.fail("clear_range", http_error(503))
    with pytest.raises(SyncWriteError):
        engine.sync(acme.id)
    assert "write_range" not in fake_google.methods()


def test_unauthorized_write_is_refreshed_and_retried_once(engine, acme, fake_google, http_error, token_endpoint):
    fake_google.fail("clear_range", http_error(401, "invalid credentials"))

    assert engine.sync(acme.id) == 2

    assert token_endpoint.grant_types() == ["refresh_token"]
    assert fake_google.methods() == ["clear_range", "clear_range", "write_range"]
    assert fake_google.tokens == ["stored-access", "refreshed-access-1"]


def test_second_unauthorized_is_not_retried_again(engine, acme, fake_google, http_error, token_endpoint):
    fake_google.fail("clear_range", http_error(401), http_error(401))

    with pytest.raises(SyncWriteError):
        engine.sync(acme.id)

    assert token_endpoint.grant_types() == ["refresh_token"]


def test_rejected_refresh_during_retry_surfaces_refresh_error(engine, acme, fake_google, http_error, token_endpoint):
    fake_google.fail("clear_range", http_error(401))
    token_endpoint.respond(400, {"error": "invalid_grant"})

    with pytest.raises(RefreshError):
        engine.sync(acme.id)


def test_expired_token_is_refreshed_before_first_call(engine, make_client, fake_google, token_endpoint):
    stale = make_client(expired=True)

    engine.sync(stale.id)

    assert token_endpoint.grant_types() == ["refresh_token"]
    assert fake_google.tokens == ["refreshed-access-1"]


def test_sync_in_progress_is_rejected_after_timeout(engine, acme, fake_google):
    lock = sync_lock(acme.id)
    lock.acquire()
    try:
        with pytest.raises(SyncInProgressError):
            engine.sync(acme.id)
    finally:
        lock.release()
    assert fake_google.calls == []


def test_requires_google_connection(engine, make_client):
    offline = make_client(authenticated=False)
    with pytest.raises(NotAuthenticatedError):
        engine.sync(offline.id)


def test_requires_provisioned_sheet(engine, make_client):
    unprovisioned = make_client(provisioned=False)
    with pytest.raises(NotProvisionedError):
        engine.sync(unprovisioned.id)
