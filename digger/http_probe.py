import asyncio
import time
from typing import AsyncIterator

import aiohttp
from yarl import URL

from .events import EventSink
from .results import FailureKind, FetchCategory, HeadCapture, ProbeFailure, failure_from_exception
from .settings import DiggerConfig
from .urls import with_scheme


DEFAULT_HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}

HEAD_END = b"</head>"
BODY_START = b"<body"
CHUNK_SIZE = 8192


def flatten_headers(headers) -> dict[str, str]:
    """Lowercase header names; repeated headers are joined with ", "."""
    out: dict[str, str] = {}
    for name, value in headers.items():
        key = name.lower()
        out[key] = f"{out[key]}, {value}" if key in out else value
    return out


def _marker_cut(data: bytes) -> int | None:
    lower = data.lower()
    idx = lower.rfind(HEAD_END)
    if idx != -1:
        return idx + len(HEAD_END)
    idx = lower.find(BODY_START)
    if idx != -1:
        return idx
    return None


async def capture_head(chunks: AsyncIterator[bytes], max_bytes: int, min_bytes: int) -> tuple[bytes, bool, int]:
    """
    Read the start of a document until its <head> is complete.

    - stop once a `</head>` or `<body` marker has been seen AND at least
      `min_bytes` were read, or when `max_bytes` is reached
    - cut at the last `</head>` seen (inclusive), else at the first `<body`,
      else at `max_bytes`
    - `truncated` is set only when bytes were discarded or the stream had
      more to give when reading stopped

    Returns (captured bytes, truncated, bytes read).
    """
    buf = bytearray()
    marker_seen = False
    more_remaining = False
    it = chunks.__aiter__()

    async for chunk in it:
        scan_from = max(0, len(buf) - len(HEAD_END))
        buf.extend(chunk)
        if not marker_seen:
            window = bytes(buf[scan_from:]).lower()
            marker_seen = HEAD_END in window or BODY_START in window
        if len(buf) >= max_bytes or (marker_seen and len(buf) >= min_bytes):
            nxt = await anext(it, None)
            if nxt:
                buf.extend(nxt)
                more_remaining = True
            break

    bytes_read = len(buf)
    data = bytes(buf[:max_bytes])
    cut = _marker_cut(data)
    if cut is not None:
        data = data[:cut]
    truncated = more_remaining or len(data) < bytes_read
    return data, truncated, bytes_read


class HeadProbe:
    """
    Primary-document probe built on aiohttp.

    - GET with redirects followed, reading only enough body to capture <head>
    - HTTPS failures are retried once over HTTP before giving up
    - Any HTTP status (including 4xx/5xx) is a successful probe; only transport
      failures count as failures
    """
    category = FetchCategory.MAIN

    def __init__(self, session: aiohttp.ClientSession, config: DiggerConfig, events: EventSink | None = None):
        self.session = session
        self.config = config
        self.events = events or EventSink("main")

    async def fetch_head(self, url: str) -> HeadCapture:
        """
        Fetch one URL and capture its head. Raises on transport failure.
        """
        self.events.emit("fetch-head:start", url=url)
        t0 = time.perf_counter()
        headers = {**DEFAULT_HTTP_HEADERS, "User-Agent": self.config.user_agent}
        timeout = aiohttp.ClientTimeout(total=self.config.html_fetch_timeout_s)

        async with self.session.get(url, headers=headers, timeout=timeout, allow_redirects=True) as resp:
            ttfb = (time.perf_counter() - t0) * 1000
            data, truncated, bytes_read = await capture_head(
                resp.content.iter_chunked(CHUNK_SIZE),
                self.config.max_head_bytes,
                self.config.min_head_bytes,
            )
            elapsed = (time.perf_counter() - t0) * 1000
            charset = resp.charset or "utf-8"
            try:
                text = data.decode(charset, errors="replace")
            except LookupError:
                text = data.decode("utf-8", errors="replace")

            capture = HeadCapture(
                url=url,
                final_url=str(resp.url),
                status=resp.status,
                headers=flatten_headers(resp.headers),
                head_html=text,
                truncated=truncated,
                bytes_read=bytes_read,
                elapsed_ms=elapsed,
                ttfb_ms=ttfb,
                redirects=self._redirects(resp),
            )
        self.events.emit(
            "fetch-head:complete",
            url=url,
            status=capture.status,
            final_url=capture.final_url,
            bytes_read=bytes_read,
            truncated=truncated,
        )
        return capture

    async def run(self, url: str) -> HeadCapture | ProbeFailure:
        """
        Fetch with HTTPS first and fall back to HTTP at most once.

        Returns:
            HeadCapture on any HTTP response, otherwise a non-recoverable
            ProbeFailure carrying the HTTPS error.
        """
        try:
            return await self.fetch_head(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            first = exc

        if not url.lower().startswith("https://"):
            self.events.emit("fetch-head:failed", url=url, error=repr(first))
            return self._fatal(first)

        http_url = with_scheme(url, "http")
        self.events.emit("fetch-head:https-failed-trying-http", url=url, http_url=http_url, error=repr(first))
        try:
            return await self.fetch_head(http_url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            self.events.emit("fetch-head:failed", url=url, https_error=repr(first), http_error=repr(exc))
            return self._fatal(first)

    def _fatal(self, exc: BaseException) -> ProbeFailure:
        failure = failure_from_exception(self.category, exc, recoverable=False)
        if failure.kind is FailureKind.UNKNOWN:
            return ProbeFailure(self.category, FailureKind.NETWORK, failure.message, False)
        return failure

    @staticmethod
    def _redirects(resp: aiohttp.ClientResponse) -> list[dict]:
        hops = []
        for hop in resp.history:
            location = hop.headers.get("Location")
            target = str(hop.url.join(URL(location))) if location else str(resp.url)
            hops.append({"source": str(hop.url), "target": target, "status": hop.status})
        return hops
