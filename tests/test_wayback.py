import asyncio
import json

from aiohttp import web

from digger.events import RecordingSink
from digger.models import HistoryData
from digger.results import FailureKind, ProbeFailure
from digger.wayback import WaybackProbe, archive_url_for, format_wayback_date, reconcile_history


def _app(available=200, closest=True, cdx_status=200, cdx_rows=None, availability_payload=None):
    async def availability(request):
        if available != 200:
            return web.Response(status=available)
        if availability_payload is not None:
            return web.json_response(availability_payload)
        snapshots = {"closest": {"available": True, "timestamp": "20240101000000"}} if closest else {}
        return web.json_response({"url": request.query["url"], "archived_snapshots": snapshots})

    async def cdx(request):
        assert request.query["collapse"] == "timestamp:8"
        if cdx_status != 200:
            return web.Response(status=cdx_status)
        # The CDX API answers JSON with a text/plain content type.
        return web.Response(text=json.dumps(cdx_rows), content_type="text/plain")

    app = web.Application()
    app.router.add_get("/available", availability)
    app.router.add_get("/cdx", cdx)
    return app


def _run(local_server, config, sink=None, **app_kwargs):
    async def scenario():
        async with local_server(_app(**app_kwargs)) as (server, session):
            probe = WaybackProbe(
                session,
                config,
                sink,
                availability_api=str(server.make_url("/available")),
                cdx_api=str(server.make_url("/cdx")),
            )
            return await probe.run("https://example.com")

    return asyncio.run(scenario())


def test_counts_daily_snapshots_and_date_range(local_server, config):
    rows = [["timestamp"], ["20010203040506"], ["20150101000000"], ["20240517120000"]]
    result = _run(local_server, config, cdx_rows=rows)

    assert result.wayback_machine_snapshots == 3
    assert result.first_seen == "2001-02-03"
    assert result.last_seen == "2024-05-17"
    assert result.rate_limited is False
    assert result.archive_url == archive_url_for("https://example.com")


def test_no_closest_snapshot_means_no_history(local_server, config):
    result = _run(local_server, config, closest=False)
    assert result.wayback_machine_snapshots == 0
    assert result.rate_limited is False


def test_availability_429_is_rate_limited_not_empty(local_server, config):
    sink = RecordingSink()
    result = _run(local_server, config, sink, available=429)

    assert isinstance(result, HistoryData)
    assert result.rate_limited is True
    assert result.wayback_machine_snapshots is None
    assert "wayback:rate-limited" in sink.names()


def test_availability_server_error_is_failure(local_server, config):
    result = _run(local_server, config, available=503)
    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.SERVER_ERROR


def test_cdx_throttled_after_positive_availability(local_server, config):
    result = _run(local_server, config, cdx_status=429)
    assert result.wayback_machine_snapshots == 0
    assert result.rate_limited is True


def test_cdx_header_only_is_suspicious(local_server, config):
    sink = RecordingSink()
    result = _run(local_server, config, sink, cdx_rows=[["timestamp"]])
    assert result.rate_limited is True
    assert "wayback:cdx-empty-suspicious" in sink.names()


def test_unreachable_archive_is_failure(closed_port, config):
    async def scenario():
        import aiohttp

        async with aiohttp.ClientSession() as session:
            probe = WaybackProbe(
                session,
                config,
                availability_api=f"http://127.0.0.1:{closed_port}/available",
                cdx_api=f"http://127.0.0.1:{closed_port}/cdx",
            )
            return await probe.run("https://example.com")

    result = asyncio.run(scenario())
    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.NETWORK


def test_format_wayback_date():
    assert format_wayback_date("20240517120000") == "2024-05-17"
    assert format_wayback_date("2024") is None
    assert format_wayback_date(None) is None


def test_reconcile_keeps_prior_positive_count_when_throttled():
    previous = HistoryData(wayback_machine_snapshots=42, first_seen="2001-01-01")
    new = HistoryData(wayback_machine_snapshots=0, rate_limited=True)

    merged = reconcile_history(new, previous)

    assert merged.wayback_machine_snapshots == 42
    assert merged.first_seen == "2001-01-01"
    assert merged.rate_limited is True


def test_reconcile_without_prior_data_keeps_new_result():
    new = HistoryData(rate_limited=True)
    assert reconcile_history(new, None) is new
    assert reconcile_history(new, HistoryData(wayback_machine_snapshots=0)) is new


def test_reconcile_passes_through_unthrottled_results():
    new = HistoryData(wayback_machine_snapshots=5)
    assert reconcile_history(new, HistoryData(wayback_machine_snapshots=42)) is new


def test_malformed_cdx_rows_are_treated_as_throttling(local_server, config):
    sink = RecordingSink()
    result = _run(local_server, config, sink, cdx_rows=[["timestamp"], 20200101, 20210101])

    assert isinstance(result, HistoryData)
    assert result.wayback_machine_snapshots == 0
    assert result.rate_limited is True
    assert "wayback:cdx-empty-suspicious" in sink.names()


def test_malformed_rows_are_skipped_when_others_are_usable(local_server, config):
    rows = [["timestamp"], ["20100101000000"], [], [12345], "junk", ["20200202000000"]]
    result = _run(local_server, config, cdx_rows=rows)

    assert result.wayback_machine_snapshots == 2
    assert result.first_seen == "2010-01-01"
    assert result.last_seen == "2020-02-02"
    assert result.rate_limited is False


def test_availability_payload_that_is_not_an_object_means_no_history(local_server, config):
    result = _run(local_server, config, availability_payload=["unexpected"])

    assert isinstance(result, HistoryData)
    assert result.wayback_machine_snapshots == 0
