import asyncio

import aiohttp

from .events import EventSink
from .models import ContentSignals
from .results import FetchCategory, ProbeFailure, ResourceCheck, failure_from_exception
from .settings import DiggerConfig
from .urls import root_resource_url

RESOURCE_NAMES = {
    FetchCategory.ROBOTS: "robots.txt",
    FetchCategory.SITEMAP: "sitemap.xml",
    FetchCategory.LLMS_TXT: "llms.txt",
}

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
HTML_MARKERS = (b"<!doctype html", b"<html", b"<head", b"<body", b"<title")

_SIGNAL_KEYS = {"search": "search", "ai-input": "ai_input", "ai-train": "ai_train"}


def looks_like_html(content_type: str | None, prefix: bytes) -> bool:
    """
    True when a response is an HTML page: by content type, or by HTML
    document markers near the start of the body.
    """
    if content_type and content_type.split(";", 1)[0].strip().lower() in HTML_CONTENT_TYPES:
        return True
    lower = prefix.lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    return any(marker in lower for marker in HTML_MARKERS)


def parse_content_signals(content: str) -> ContentSignals | None:
    """
    Extract Content-Signal directives from robots.txt.

    Strategy:
    - Only lines in the `User-agent: *` group (or before any group) count
    - The first Content-Signal line wins
    - search / ai-input / ai-train become fields, other pairs are kept raw
    """
    in_star_block = True
    last_was_agent = False

    for ln in content.splitlines():
        ln = ln.split("#", 1)[0].strip()
        if not ln or ":" not in ln:
            continue
        key, value = (part.strip() for part in ln.split(":", 1))
        key = key.lower()

        if key == "user-agent":
            if not last_was_agent:
                in_star_block = False
            in_star_block = in_star_block or value == "*"
            last_was_agent = True
            continue
        last_was_agent = False

        if key == "content-signal" and in_star_block:
            fields: dict[str, str] = {}
            unknown = []
            for pair in value.split(","):
                if "=" not in pair:
                    continue
                name, val = (p.strip().lower() for p in pair.split("=", 1))
                if name in _SIGNAL_KEYS and val in ("yes", "no"):
                    fields[_SIGNAL_KEYS[name]] = val
                else:
                    unknown.append(f"{name}={val}")
            if not fields and not unknown:
                continue
            return ContentSignals(**fields, raw=", ".join(unknown) or None)

    return None


class TextResourceProbe:
    """
    Existence probes for robots.txt, sitemap.xml and llms.txt.

    A resource "exists" only for a 2xx response whose body is not an HTML
    page; many hosts answer 200 with a "not found" page (soft 404).
    """

    def __init__(self, session: aiohttp.ClientSession, config: DiggerConfig, events: EventSink | None = None):
        self.session = session
        self.config = config
        self.events = events or EventSink("resources")

    async def check(self, category: FetchCategory, url: str, keep_body: bool = False) -> ResourceCheck | ProbeFailure:
        limit = self.config.robots_body_max_bytes if keep_body else self.config.soft_404_scan_bytes
        headers = {"User-Agent": self.config.user_agent}
        timeout = aiohttp.ClientTimeout(total=self.config.resource_fetch_timeout_s)
        try:
            async with self.session.get(url, headers=headers, timeout=timeout, allow_redirects=True) as resp:
                content_type = resp.headers.get("Content-Type")
                if not 200 <= resp.status < 300:
                    self.events.emit("resource:missing", url=url, status=resp.status)
                    return ResourceCheck(url=url, exists=False, status=resp.status, content_type=content_type)
                prefix = await self._read_prefix(resp, limit)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            self.events.emit("resource:error", url=url, error=repr(exc))
            return failure_from_exception(category, exc)

        soft_404 = looks_like_html(content_type, prefix[: self.config.soft_404_scan_bytes])
        body = None
        if keep_body and not soft_404:
            body = prefix.decode("utf-8", errors="replace")
        self.events.emit("resource:checked", url=url, status=resp.status, soft_404=soft_404)
        return ResourceCheck(
            url=url,
            exists=not soft_404,
            status=resp.status,
            is_soft_404=soft_404,
            content_type=content_type,
            body=body,
        )

    async def run(self, category: FetchCategory, base_url: str) -> ResourceCheck | ProbeFailure:
        url = root_resource_url(RESOURCE_NAMES[category], base_url)
        return await self.check(category, url, keep_body=category is FetchCategory.ROBOTS)

    @staticmethod
    async def _read_prefix(resp: aiohttp.ClientResponse, limit: int) -> bytes:
        buf = bytearray()
        async for chunk in resp.content.iter_chunked(4096):
            buf.extend(chunk)
            if len(buf) >= limit:
                break
        return bytes(buf[:limit])
