import asyncio
import threading
from datetime import date, datetime, timezone

import pytest
from aiohttp import web
from aiohttp import test_utils

from attribution.errors import ConfigurationError, SourceApiError, StorageError
from attribution.services import polling as polling_module
from attribution.services.afb_client import AfbApiClient
from attribution.services.ingestion import ConversionRecorder, DedupGate, LedgerWriter

URL = "/api/v1/cron/sync-afb-conversions"


def _record(commit_id, flg=1, margin="1500", adv_name="Medical Insurance"):
    return {
        "commit_id": commit_id,
        "adv_id": "55",
        "adv_name": adv_name,
        "commit_time": "2025-01-03 21:00:00",
        "margin": margin,
        "commit_flg": flg,
    }


def test_requires_bearer_token(client, fake_afb_client):
    fake = fake_afb_client([_record("C1")])
    assert client.post(URL).status_code == 401
    r = client.post(URL, headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "Unauthorized", "request_id": r.headers["X-Request-ID"]}
    assert fake.calls == []


def test_unconfigured_cron_secret_is_500(make_client, settings, fake_afb_client, cron_headers):
    fake_afb_client([])
    client = make_client(settings, cron_secret=None)
    r = client.post(URL, headers=cron_headers)
    assert r.status_code == 500
    assert r.json()["error"] == "Server configuration error"


def test_polling_records_new_and_skips_known(client, fake_afb_client, cron_headers, raw_rows, ledger_store):
    # already recorded by an earlier run
    ledger_store.append("conversions_raw", ["", "", "X", "afb", "1.00", "pending", "C1", "2025-01-01T00:00:00+09:00"])
    fake = fake_afb_client([_record("C1"), _record("C2", flg=0), _record("C3", flg=9), _record("C2")])

    r = client.post(URL, headers=cron_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["summary"] == {"total": 4, "new": 2, "skipped": 2, "recorded": 2, "errors": 0}
    assert "timestamp" in body
    assert fake.calls == [None]

    rows = raw_rows()
    assert [row[6] for row in rows] == ["C1", "C2", "C3"]
    c2 = rows[1]
    assert c2 == ["", "", "Medical Insurance", "afb", "1500.00", "pending", "C2", "2025-01-03T21:00:00+09:00"]
    assert rows[2][5] == "cancelled"

    # a second run finds everything known
    r = client.post(URL, headers=cron_headers)
    assert r.json()["summary"] == {"total": 4, "new": 0, "skipped": 4, "recorded": 0, "errors": 0}
    assert len(raw_rows()) == 3


def test_per_record_write_failure_is_counted(client, fake_afb_client, cron_headers, monkeypatch, raw_rows):
    fake_afb_client([_record("C1"), _record("BROKEN"), _record("C3")])

    original = polling_module.ConversionRecorder.record_known

    def flaky(self, event, known):
        if event.order_id == "BROKEN":
            raise StorageError("append failed")
        return original(self, event, known)

    monkeypatch.setattr(polling_module.ConversionRecorder, "record_known", flaky)

    r = client.post(URL, headers=cron_headers)
    assert r.status_code == 200, r.text
    assert r.json()["summary"] == {"total": 3, "new": 3, "skipped": 0, "recorded": 2, "errors": 1}
    assert [row[6] for row in raw_rows()] == ["C1", "C3"]


def test_source_api_failure_is_500(client, fake_afb_client, cron_headers, raw_rows):
    fake_afb_client(error=SourceApiError("AFB API error: 503"))
    r = client.post(URL, headers=cron_headers)
    assert r.status_code == 500
    assert r.json()["error"] == "AFB API error: 503"
    assert raw_rows() == []


@pytest.mark.parametrize("partner_id, api_key", [(None, "k"), ("p", None)])
def test_client_requires_credentials(partner_id, api_key):
    client = AfbApiClient(partner_id=partner_id, api_key=api_key)
    with pytest.raises(ConfigurationError):
        asyncio.run(client.fetch_by_date_range(date(2025, 1, 1), date(2025, 1, 7)))


def test_malformed_record_does_not_abort_run(client, fake_afb_client, cron_headers, raw_rows):
    missing_time = _record("C4")
    del missing_time["commit_time"]
    fake_afb_client([
        _record("C1"),
        _record("BAD", margin="-100"),
        missing_time,
        _record("NULLFLG", flg=None),
        _record("C3"),
    ])

    r = client.post(URL, headers=cron_headers)
    assert r.status_code == 200, r.text
    assert r.json()["summary"] == {"total": 5, "new": 2, "skipped": 0, "recorded": 2, "errors": 3}
    assert [row[6] for row in raw_rows()] == ["C1", "C3"]


def test_sync_against_source_api_with_bad_record(ledger_store, raw_rows):
    async def handler(request):
        return web.json_response({"response": [
            _record("C1"),
            _record("BAD", margin="-100"),
            _record("C3"),
        ]})

    async def _main():
        app = web.Application()
        app.router.add_get("/partners/{partner_id}/conversion", handler)
        async with test_utils.TestServer(app) as server:
            client = AfbApiClient("partner-1", "key-1", base_url=str(server.make_url("")))
            recorder = ConversionRecorder(DedupGate(ledger_store), LedgerWriter(ledger_store))
            return await polling_module.sync_conversions(client, recorder)

    summary = asyncio.run(_main())
    assert summary.model_dump() == {"total": 3, "new": 2, "skipped": 0, "recorded": 2, "errors": 1}
    assert [row[6] for row in raw_rows()] == ["C1", "C3"]


def test_ledger_work_runs_off_the_event_loop(ledger_store, fake_afb_client, monkeypatch):
    loop_thread = threading.get_ident()
    seen = {}
    original = polling_module.record_polled

    def tracking(*args):
        seen["thread"] = threading.get_ident()
        return original(*args)

    monkeypatch.setattr(polling_module, "record_polled", tracking)
    fake = fake_afb_client([_record("C1")])
    recorder = ConversionRecorder(DedupGate(ledger_store), LedgerWriter(ledger_store))

    summary = asyncio.run(polling_module.sync_conversions(fake, recorder))
    assert summary.recorded == 1
    assert seen["thread"] != loop_thread


def test_key_recorded_by_postback_mid_run_is_skipped(ledger_store, raw_rows, monkeypatch):
    recorder = ConversionRecorder(DedupGate(ledger_store), LedgerWriter(ledger_store))
    original = DedupGate.existing_keys
    landed = []

    def keys_then_postback(self, source_name):
        keys = original(self, source_name)
        if not landed:
            # a postback lands between the key-set read and the append
            landed.append(True)
            ledger_store.append("conversions_raw", ["m", "", "afb-ad:1", "afb", "1.00", "approved", "C2", "2025-01-03T21:00:00+09:00"])
        return keys

    monkeypatch.setattr(DedupGate, "existing_keys", keys_then_postback)

    summary = polling_module.record_polled(
        [_record("C1"), _record("C2")], recorder, "afb", datetime(2025, 1, 4, tzinfo=timezone.utc),
    )
    assert summary.model_dump() == {"total": 2, "new": 1, "skipped": 1, "recorded": 1, "errors": 0}
    assert [row[6] for row in raw_rows()] == ["C2", "C1"]
