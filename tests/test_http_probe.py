import asyncio

from aiohttp import web

from digger.events import RecordingSink
from digger.http_probe import HeadProbe, capture_head, flatten_headers
from digger.results import FailureKind, FetchCategory, HeadCapture, ProbeFailure


async def _chunks(data: bytes, size: int = 1000):
    for i in range(0, len(data), size):
        yield data[i:i + size]


def run_capture(data: bytes, max_bytes: int = 4096, min_bytes: int = 0, size: int = 1000):
    return asyncio.run(capture_head(_chunks(data, size), max_bytes, min_bytes))


def test_small_complete_document_is_cut_at_head_end():
    doc = b"<html><head><title>x</title></head><body>hello</body></html>"
    data, truncated, read = run_capture(doc)
    assert data == b"<html><head><title>x</title></head>"
    assert read == len(doc)
    assert truncated is True


def test_document_without_markers_is_returned_whole():
    doc = b"just some text"
    data, truncated, read = run_capture(doc)
    assert data == doc
    assert truncated is False
    assert read == len(doc)


def test_ceiling_stops_reading_and_truncates():
    doc = b"<html><head>" + b"x" * 10_000
    data, truncated, read = run_capture(doc, max_bytes=2048)
    assert len(data) == 2048
    assert truncated is True
    assert read < len(doc)


def test_early_head_end_stops_reading_without_floor():
    doc = b"<head></head>" + b"y" * 50_000
    data, truncated, read = run_capture(doc, max_bytes=100_000, min_bytes=0)
    assert data == b"<head></head>"
    assert read == 2000
    assert truncated is True


def test_floor_keeps_reading_past_head_end_inside_script():
    # A literal "</head>" inside a script must not cut the capture short.
    head = b"<head><script>var s='</head>';</script>" + b"<meta name='a' content='b'>" * 200 + b"</head>"
    doc = head + b"<body>" + b"z" * 20_000
    data, truncated, _ = run_capture(doc, max_bytes=100_000, min_bytes=len(head) + 10)
    assert data == head
    assert b"<meta name='a'" in data
    assert truncated is True


def test_body_marker_is_used_when_head_end_missing():
    doc = b"<html><title>t</title><body><p>hi</p></body>"
    data, _, _ = run_capture(doc)
    assert data == b"<html><title>t</title>"


def test_marker_split_across_chunks_is_detected():
    doc = b"<head><title>t</title></he" + b"ad>" + b"q" * 5000
    data, _, read = run_capture(doc, size=26)
    assert data.endswith(b"</head>")
    assert read < len(doc)


def test_document_of_exactly_max_bytes_is_not_truncated():
    doc = b"a" * 2048
    data, truncated, read = run_capture(doc, max_bytes=2048, size=1024)
    assert data == doc
    assert read == 2048
    assert truncated is False


def test_document_ending_at_head_end_is_not_truncated():
    doc = b"<html><head><title>t</title></head>"
    data, truncated, read = run_capture(doc, size=10)
    assert data == doc
    assert read == len(doc)
    assert truncated is False


def test_one_byte_over_max_bytes_is_truncated():
    doc = b"a" * 2049
    data, truncated, _ = run_capture(doc, max_bytes=2048, size=1024)
    assert len(data) == 2048
    assert truncated is True


def test_flatten_headers_lowercases_and_joins():
    from multidict import CIMultiDict

    headers = CIMultiDict([("Set-Cookie", "a=1"), ("set-cookie", "b=2"), ("Server", "nginx")])
    assert flatten_headers(headers) == {"set-cookie": "a=1, b=2", "server": "nginx"}


HTML = "<html><head><title>Local</title></head><body>content</body></html>"


def _app():
    async def index(request):
        return web.Response(text=HTML, content_type="text/html", headers={"Server": "test"})

    async def limited(request):
        return web.Response(status=429)

    async def moved(request):
        raise web.HTTPFound("/")

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/limited", limited)
    app.router.add_get("/moved", moved)
    return app


def test_fetch_head_captures_local_page(local_server, config):
    async def scenario():
        async with local_server(_app()) as (server, session):
            probe = HeadProbe(session, config)
            return await probe.run(str(server.make_url("/")))

    result = asyncio.run(scenario())

    assert isinstance(result, HeadCapture)
    assert result.status == 200
    assert result.headers["server"] == "test"
    assert "<title>Local</title>" in result.head_html
    assert result.head_html.endswith("</head>")
    assert result.redirects == []


def test_rate_limited_response_is_still_a_capture(local_server, config):
    async def scenario():
        async with local_server(_app()) as (server, session):
            return await HeadProbe(session, config).run(str(server.make_url("/limited")))

    result = asyncio.run(scenario())

    assert isinstance(result, HeadCapture)
    assert result.status == 429
    assert result.head_html == ""


def test_redirect_hops_are_recorded(local_server, config):
    async def scenario():
        async with local_server(_app()) as (server, session):
            return await HeadProbe(session, config).run(str(server.make_url("/moved")))

    result = asyncio.run(scenario())

    assert result.status == 200
    assert len(result.redirects) == 1
    hop = result.redirects[0]
    assert hop["status"] == 302
    assert hop["source"].endswith("/moved")
    assert hop["target"] == result.final_url


def test_https_failure_falls_back_to_http_once(local_server, config):
    sink = RecordingSink()

    async def scenario():
        async with local_server(_app()) as (server, session):
            https_url = f"https://{server.host}:{server.port}/"
            return await HeadProbe(session, config, sink).run(https_url)

    result = asyncio.run(scenario())

    assert isinstance(result, HeadCapture)
    assert result.url.startswith("http://")
    assert "fetch-head:https-failed-trying-http" in sink.names()


def test_both_schemes_failing_returns_fatal_failure(closed_port, config):
    sink = RecordingSink()

    async def scenario():
        import aiohttp

        async with aiohttp.ClientSession() as session:
            return await HeadProbe(session, config, sink).run(f"https://127.0.0.1:{closed_port}/")

    result = asyncio.run(scenario())

    assert isinstance(result, ProbeFailure)
    assert result.category is FetchCategory.MAIN
    assert result.recoverable is False
    assert result.kind is FailureKind.NETWORK
    assert sink.names().count("fetch-head:start") == 2
    assert "fetch-head:failed" in sink.names()
