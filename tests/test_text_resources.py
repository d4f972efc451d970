import asyncio

from aiohttp import web

from digger.results import FailureKind, FetchCategory, ProbeFailure, ResourceCheck
from digger.text_resources import TextResourceProbe, looks_like_html, parse_content_signals

ROBOTS = """\
User-agent: *
Content-Signal: search=yes, ai-train=no
Disallow: /private
"""


def _app():
    async def robots(request):
        return web.Response(text=ROBOTS, content_type="text/plain")

    async def sitemap_soft_404(request):
        return web.Response(text="<!DOCTYPE html><html><body>Not found</body></html>", content_type="text/html")

    async def llms_disguised(request):
        # Declared as text but actually an HTML error page.
        return web.Response(text="\n<html><head><title>404</title></head></html>", content_type="text/plain")

    app = web.Application()
    app.router.add_get("/robots.txt", robots)
    app.router.add_get("/sitemap.xml", sitemap_soft_404)
    app.router.add_get("/llms.txt", llms_disguised)
    return app


def _run(local_server, config, category, path=None):
    async def scenario():
        async with local_server(_app()) as (server, session):
            probe = TextResourceProbe(session, config)
            if path is not None:
                return await probe.check(category, str(server.make_url(path)))
            return await probe.run(category, str(server.make_url("/some/page")))

    return asyncio.run(scenario())


def test_robots_exists_and_keeps_body(local_server, config):
    result = _run(local_server, config, FetchCategory.ROBOTS)
    assert isinstance(result, ResourceCheck)
    assert result.exists is True
    assert result.url.endswith("/robots.txt")
    assert "Disallow: /private" in result.body


def test_html_200_is_soft_404(local_server, config):
    result = _run(local_server, config, FetchCategory.SITEMAP)
    assert result.status == 200
    assert result.exists is False
    assert result.is_soft_404 is True
    assert result.body is None


def test_html_body_with_text_content_type_is_soft_404(local_server, config):
    result = _run(local_server, config, FetchCategory.LLMS_TXT)
    assert result.exists is False
    assert result.is_soft_404 is True


def test_missing_resource_reports_status(local_server, config):
    result = _run(local_server, config, FetchCategory.SITEMAP, path="/nothing-here.xml")
    assert isinstance(result, ResourceCheck)
    assert result.exists is False
    assert result.status == 404
    assert result.is_soft_404 is False


def test_unreachable_host_is_recoverable_failure(closed_port, config):
    async def scenario():
        import aiohttp

        async with aiohttp.ClientSession() as session:
            return await TextResourceProbe(session, config).run(
                FetchCategory.ROBOTS, f"http://127.0.0.1:{closed_port}/"
            )

    result = asyncio.run(scenario())

    assert isinstance(result, ProbeFailure)
    assert result.category is FetchCategory.ROBOTS
    assert result.kind is FailureKind.NETWORK
    assert result.recoverable is True


def test_looks_like_html():
    assert looks_like_html("text/html; charset=utf-8", b"")
    assert looks_like_html("text/plain", b"\xef\xbb\xbf  <!DOCTYPE HTML>")
    assert not looks_like_html("text/plain", b"User-agent: *\nDisallow:")
    assert not looks_like_html(None, b"<?xml version='1.0'?><urlset>")


def test_content_signals_from_star_group():
    signals = parse_content_signals(ROBOTS)
    assert signals.search == "yes"
    assert signals.ai_train == "no"
    assert signals.ai_input is None


def test_content_signals_in_other_agent_group_are_ignored():
    robots = "User-agent: Googlebot\nContent-Signal: search=no\n\nUser-agent: *\nDisallow:\n"
    assert parse_content_signals(robots) is None


def test_content_signals_shared_group_with_star():
    robots = "User-agent: Googlebot\nUser-agent: *\nContent-Signal: ai-input=yes, custom=1\n"
    signals = parse_content_signals(robots)
    assert signals.ai_input == "yes"
    assert signals.raw == "custom=1"


def test_no_content_signals():
    assert parse_content_signals("User-agent: *\nDisallow: /\n") is None
