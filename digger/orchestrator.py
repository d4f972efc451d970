"""
Inspection orchestrator.

One call to `Inspector.inspect` normalizes the URL, answers from the cache
when it can, and otherwise runs every probe concurrently:

- primary document (head capture, HTTPS -> HTTP fallback)
- robots.txt / sitemap.xml / llms.txt existence checks
- DNS, TLS certificate, archive history, host metadata in the background

Sections are published as they become ready (`on_update`) together with a
per-category progress snapshot (`on_progress`). If the primary document
cannot be fetched at all, every pending probe is cancelled and FetchFailed
is raised. Only complete Reports are written to the cache.
"""

import asyncio
import time
from typing import Callable

import aiohttp

from .cache import CacheStore
from .dns_probe import DnsProbe
from .errors import FetchFailed, InvalidUrl
from .events import EventSink
from .extractor import (
    extract_data_feeds,
    extract_discoverability,
    extract_metadata,
    extract_overview,
    extract_resources,
    parse_head,
)
from .host_meta import HostMetaProbe
from .http_probe import HeadProbe
from .models import (
    CertificateData,
    DNSData,
    FetchError,
    HistoryData,
    HostMetadataData,
    NetworkingData,
    PerformanceData,
    Redirect,
    Report,
)
from .progress import Category, ProgressState, ProgressTracker
from .results import FailureKind, FetchCategory, HeadCapture, ProbeFailure, ResourceCheck
from .settings import DEFAULT_DIGGER_CONFIG, DiggerConfig
from .signals import detect_bot_protection, detect_payment_signals
from .text_resources import TextResourceProbe, parse_content_signals
from .tls_probe import TlsProbe
from .urls import host_of, normalize_url
from .wayback import WaybackProbe, archive_url_for, reconcile_history

# Progress value for "request sent, waiting on the network".
IN_FLIGHT = 0.3

EXISTENCE_CHECKS = (FetchCategory.ROBOTS, FetchCategory.SITEMAP, FetchCategory.LLMS_TXT)


class Probes:
    """
    The probe set used by an Inspector.

    Every method returns a typed value or a ProbeFailure and must not raise
    (cancellation excepted). Substitute a subclass to change how a concern
    is probed.
    """

    async def head(self, url: str, events: EventSink) -> HeadCapture | ProbeFailure:
        raise NotImplementedError

    async def resource(self, category: FetchCategory, url: str, events: EventSink) -> ResourceCheck | ProbeFailure:
        raise NotImplementedError

    async def dns(self, host: str, events: EventSink) -> DNSData | ProbeFailure:
        raise NotImplementedError

    async def certificate(self, host: str, events: EventSink) -> CertificateData | ProbeFailure:
        raise NotImplementedError

    async def wayback(self, url: str, events: EventSink) -> HistoryData | ProbeFailure:
        raise NotImplementedError

    async def host_meta(self, url: str, events: EventSink) -> HostMetadataData | ProbeFailure:
        raise NotImplementedError


class NetworkProbes(Probes):
    """Probes backed by a shared aiohttp session, dnspython and ssl sockets."""

    def __init__(self, session: aiohttp.ClientSession, config: DiggerConfig):
        self.session = session
        self.config = config

    async def head(self, url, events):
        return await HeadProbe(self.session, self.config, events).run(url)

    async def resource(self, category, url, events):
        return await TextResourceProbe(self.session, self.config, events).run(category, url)

    async def dns(self, host, events):
        return await DnsProbe(self.config, events).run(host)

    async def certificate(self, host, events):
        return await TlsProbe(self.config, events).run(host)

    async def wayback(self, url, events):
        return await WaybackProbe(self.session, self.config, events).run(url)

    async def host_meta(self, url, events):
        return await HostMetaProbe(self.session, self.config, events).run(url)


class ReportBuilder:
    """
    Mutable in-progress Report, owned by a single inspection.

    Every `set` publishes an immutable partial Report to the listener.
    """

    def __init__(self, url: str, listener: Callable[[Report], None] | None = None):
        self.url = url
        self.started_at = time.time()
        self._listener = listener
        self._sections: dict[str, object] = {}
        self._errors: list[FetchError] = []

    def get(self, name: str):
        return self._sections.get(name)

    def set(self, name: str, value) -> None:
        self._sections[name] = value
        if self._listener is not None:
            self._listener(self.build())

    def record(self, failure: ProbeFailure) -> None:
        self._errors.append(
            FetchError(
                category=failure.category.value,
                kind=failure.kind.value,
                message=failure.message,
                description=failure.description,
                recoverable=failure.recoverable,
                timestamp=time.time(),
            )
        )

    def build(self, fetched_at: float | None = None) -> Report:
        return Report(
            url=self.url,
            fetched_at=fetched_at if fetched_at is not None else self.started_at,
            errors=list(self._errors),
            **self._sections,
        )


class _Inspection:
    """State and task bookkeeping for one cache-miss inspection."""

    def __init__(self, inspector: "Inspector", url: str, progress: ProgressTracker, builder: ReportBuilder, events: EventSink):
        self.inspector = inspector
        self.probes = inspector.probes
        self.url = url
        self.host = host_of(url)
        self.progress = progress
        self.builder = builder
        self.events = events
        self._tasks: dict[asyncio.Task, FetchCategory] = {}

    def _spawn(self, category: FetchCategory, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks[task] = category
        return task

    async def run(self) -> Report:
        try:
            return await self._run()
        except BaseException:
            self.progress.freeze()
            await self._cancel_pending()
            raise

    async def _run(self) -> Report:
        ev = self.events
        background = [
            self._spawn(FetchCategory.DNS, self._background(Category.DNS, FetchCategory.DNS, self.probes.dns, self.host)),
            self._spawn(FetchCategory.CERTIFICATE, self._background(Category.CERTIFICATE, FetchCategory.CERTIFICATE, self.probes.certificate, self.host)),
            self._spawn(FetchCategory.WAYBACK, self._background(Category.HISTORY, FetchCategory.WAYBACK, self.probes.wayback, self.url)),
            self._spawn(FetchCategory.HOST_META, self._background(Category.HOST_METADATA, FetchCategory.HOST_META, self.probes.host_meta, self.url)),
        ]
        for category in (Category.DNS, Category.CERTIFICATE, Category.HISTORY, Category.HOST_METADATA, Category.NETWORKING):
            self.progress.update(category, IN_FLIGHT)

        main = self._spawn(FetchCategory.MAIN, self.probes.head(self.url, ev.child("main")))
        checks = {c: self._spawn(c, self.probes.resource(c, self.url, ev.child(c.value))) for c in EXISTENCE_CHECKS}

        capture = await main
        if isinstance(capture, ProbeFailure):
            self.progress.freeze()
            await self._cancel_pending()
            self.builder.record(capture)
            ev.emit("fetch:failed", url=self.url, error=capture.message)
            raise FetchFailed(self.url, capture, partial=self.builder.build())

        ev.emit("fetch:response", status=capture.status, final_url=capture.final_url, truncated=capture.truncated)
        self._absorb_capture(capture)

        base = capture.final_url or self.url
        soup = parse_head(capture.head_html)
        self.progress.update(Category.OVERVIEW, 0.5)
        for category in (Category.METADATA, Category.DISCOVERABILITY, Category.RESOURCES, Category.DATA_FEEDS):
            self.progress.update(category, IN_FLIGHT)

        await self._step(Category.OVERVIEW, "overview", extract_overview(soup, capture.head_html, base))
        await self._step(Category.METADATA, "metadata", extract_metadata(soup))
        await self._step(Category.RESOURCES, "resources", extract_resources(soup, base, self.inspector.config.max_resources))
        await self._step(Category.DATA_FEEDS, "data_feeds", extract_data_feeds(soup, base))

        results = dict(zip(checks, await asyncio.gather(*checks.values())))
        await self._step(Category.DISCOVERABILITY, "discoverability", self._discoverability(soup, base, capture, results))

        ev.emit("fetch:awaiting-background", host=self.host)
        await asyncio.gather(*background)

        self._reconcile_history()
        self._attach_ip_address()
        return self.builder.build(fetched_at=time.time())

    async def _step(self, category: Category, name: str, value) -> None:
        self.builder.set(name, value)
        self.progress.complete(category)
        # Let background probes report between extraction steps.
        await asyncio.sleep(0)

    async def _background(self, category: Category, fetch_category: FetchCategory, probe, target: str) -> None:
        result = await probe(target, self.events.child(fetch_category.value))
        if isinstance(result, ProbeFailure):
            self.builder.record(result)
            self.events.emit(f"{fetch_category.value}:unavailable", error=result.message)
            result = self._unavailable(fetch_category, result)
        elif isinstance(result, HistoryData) and result.rate_limited:
            self.builder.record(ProbeFailure(fetch_category, FailureKind.RATE_LIMITED, "archive rate limited", True))

        self.builder.set(_SECTION_FOR[fetch_category], result)
        self.progress.complete(category)
        self.events.emit(f"{fetch_category.value}:complete")

    def _unavailable(self, fetch_category: FetchCategory, failure: ProbeFailure):
        if fetch_category is FetchCategory.DNS:
            return DNSData(available=False, error=failure.message)
        if fetch_category is FetchCategory.CERTIFICATE:
            return CertificateData(available=False, error=failure.message)
        if fetch_category is FetchCategory.WAYBACK:
            return HistoryData(available=False, archive_url=archive_url_for(self.url), error=failure.message)
        return HostMetadataData(available=False, error=failure.message)

    def _absorb_capture(self, capture: HeadCapture) -> None:
        headers = capture.headers
        self.builder.set(
            "networking",
            NetworkingData(
                server=headers.get("server"),
                headers=headers,
                status_code=capture.status,
                redirects=[Redirect(**hop) for hop in capture.redirects] or None,
                final_url=capture.final_url,
            ),
        )
        self.builder.set(
            "performance",
            PerformanceData(
                load_time_ms=round(capture.elapsed_ms, 1),
                ttfb_ms=round(capture.ttfb_ms, 1) if capture.ttfb_ms is not None else None,
                page_size=len(capture.head_html),
                bytes_read=capture.bytes_read,
                truncated=capture.truncated,
            ),
        )
        self.builder.set("bot_protection", detect_bot_protection(capture.status, headers, capture.head_html))
        self.progress.complete(Category.NETWORKING)

    def _discoverability(self, soup, base: str, capture: HeadCapture, results: dict):
        found = {}
        for category, result in results.items():
            if isinstance(result, ProbeFailure):
                # An unreachable resource renders as "not found".
                self.builder.record(result)
                found[category] = None
            else:
                found[category] = result if result.exists else None

        robots = found[FetchCategory.ROBOTS]
        sitemap = found[FetchCategory.SITEMAP]
        return extract_discoverability(soup, base).model_copy(
            update={
                "robots_txt": robots is not None,
                "content_signals": parse_content_signals(robots.body) if robots is not None and robots.body else None,
                "sitemap": sitemap.url if sitemap is not None else None,
                "llms_txt": found[FetchCategory.LLMS_TXT] is not None,
                "payment_signals": detect_payment_signals(capture.status, capture.headers),
            }
        )

    def _reconcile_history(self) -> None:
        previous = self.inspector.cache.peek(self.url)
        current = self.builder.get("history")
        reconciled = reconcile_history(current, previous.data.history if previous is not None else None)
        if reconciled is not current:
            self.events.emit("fetch:wayback-preserving-cached", snapshots=reconciled.wayback_machine_snapshots)
            self.builder.set("history", reconciled)

    def _attach_ip_address(self) -> None:
        dns_data = self.builder.get("dns")
        networking = self.builder.get("networking")
        if networking is None or dns_data is None or not dns_data.a_records:
            return
        self.builder.set("networking", networking.model_copy(update={"ip_address": dns_data.a_records[0]}))

    async def _cancel_pending(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            if task.cancelled():
                self.builder.record(ProbeFailure(self._tasks[task], FailureKind.CANCELLED, "cancelled", True))
        self.events.emit("fetch:cancelled-pending", count=len(pending))


_SECTION_FOR = {
    FetchCategory.DNS: "dns",
    FetchCategory.CERTIFICATE: "certificate",
    FetchCategory.WAYBACK: "history",
    FetchCategory.HOST_META: "host_metadata",
}


class Inspector:
    """
    Fetch orchestration and caching engine.

    Usage:
        async with Inspector() as inspector:
            report = await inspector.inspect("example.com", on_progress=print)

    - A fresh cache hit returns immediately with every category complete
    - Concurrent inspections are independent; the cache is the only shared state
    - `start()` runs an inspection as a task and cancels the one it supersedes
    """

    def __init__(
        self,
        config: DiggerConfig | None = None,
        cache: CacheStore | None = None,
        probes: Probes | None = None,
        session: aiohttp.ClientSession | None = None,
        events: EventSink | None = None,
    ):
        self.config = config or DEFAULT_DIGGER_CONFIG
        self.cache = cache if cache is not None else CacheStore.from_config(self.config)
        self.probes = probes
        self.events = events or EventSink("digger")
        self._session = session
        self._own_session = False
        self._current: asyncio.Task | None = None

    async def __aenter__(self):
        self._ensure_probes()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self._current is not None and not self._current.done():
            self._current.cancel()
            await asyncio.gather(self._current, return_exceptions=True)
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None
            self.probes = None

    def _ensure_probes(self) -> None:
        if self.probes is not None:
            return
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._own_session = True
        self.probes = NetworkProbes(self._session, self.config)

    async def inspect(
        self,
        url: str,
        *,
        refresh: bool = False,
        on_progress: Callable[[ProgressState], None] | None = None,
        on_update: Callable[[Report], None] | None = None,
        events: EventSink | None = None,
    ) -> Report:
        """
        Inspect one URL and return its Report.

        Raises:
            InvalidUrl   : input is not an http(s) URL (no network activity).
            FetchFailed  : primary document unreachable over HTTPS and HTTP.
        """
        events = events or self.events.child("inspect")
        progress = ProgressTracker(on_progress)

        try:
            normalized = normalize_url(url)
        except InvalidUrl as exc:
            events.emit("fetch:invalid-url", url=url, reason=exc.reason)
            raise
        events.emit("fetch:normalized", url=normalized)

        if not refresh:
            entry = await asyncio.to_thread(self.cache.get, normalized)
            if entry is not None:
                events.emit("cache:hit", url=normalized)
                progress.complete_all()
                if on_update is not None:
                    on_update(entry.data)
                return entry.data
            events.emit("cache:miss", url=normalized)

        self._ensure_probes()
        progress.start()
        builder = ReportBuilder(normalized, on_update)
        report = await _Inspection(self, normalized, progress, builder, events).run()

        await asyncio.to_thread(self.cache.put, normalized, report)
        events.emit("fetch:complete", url=normalized, errors=len(report.errors))
        return report

    def start(self, url: str, **kwargs) -> asyncio.Task:
        """Run `inspect` as a task, cancelling the inspection previously started here."""
        if self._current is not None and not self._current.done():
            self.events.emit("fetch:superseded", url=url)
            self._current.cancel()
        self._current = asyncio.create_task(self.inspect(url, **kwargs))
        return self._current
