"""
Archive-history probe (Wayback Machine).

Two calls at most:
- availability API: is there any snapshot at all?
- CDX API: how many daily snapshots, and the first / last capture dates

Rate limiting is reported as such and never as "no history".
"""

import asyncio
from urllib.parse import quote

import aiohttp

from .events import EventSink
from .models import HistoryData
from .results import FailureKind, FetchCategory, ProbeFailure, failure_from_exception
from .settings import DiggerConfig

AVAILABILITY_API = "https://archive.org/wayback/available"
CDX_API = "https://web.archive.org/cdx/search/cdx"
WAYBACK_URL = "https://web.archive.org/web"


def format_wayback_date(timestamp: str | None) -> str | None:
    """YYYYMMDDhhmmss -> YYYY-MM-DD"""
    if not timestamp or len(timestamp) < 8 or not timestamp[:8].isdigit():
        return None
    return f"{timestamp[0:4]}-{timestamp[4:6]}-{timestamp[6:8]}"


def archive_url_for(url: str) -> str:
    return f"{WAYBACK_URL}/*/{url}"


def _timestamps(rows: list) -> list[str]:
    """Capture timestamps from CDX rows; malformed rows are skipped."""
    return [row[0] for row in rows if isinstance(row, list) and row and isinstance(row[0], str)]


def reconcile_history(new: HistoryData | None, previous: HistoryData | None) -> HistoryData | None:
    """
    Keep previously known good history when the archive throttled us.

    A rate-limited result without a snapshot count must not replace a prior
    positive count; the prior data is kept and flagged as rate limited.
    """
    if new is None or not new.rate_limited or new.wayback_machine_snapshots:
        return new
    if previous is None or not previous.wayback_machine_snapshots:
        return new
    return previous.model_copy(update={"rate_limited": True, "available": True, "error": None})


class WaybackProbe:
    category = FetchCategory.WAYBACK

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: DiggerConfig,
        events: EventSink | None = None,
        availability_api: str = AVAILABILITY_API,
        cdx_api: str = CDX_API,
    ):
        self.session = session
        self.config = config
        self.events = events or EventSink("wayback")
        self.availability_api = availability_api
        self.cdx_api = cdx_api

    async def run(self, url: str) -> HistoryData | ProbeFailure:
        timeout = aiohttp.ClientTimeout(total=self.config.wayback_timeout_s)
        archive_url = archive_url_for(url)
        self.events.emit("wayback:start", url=url)

        try:
            async with self.session.get(self.availability_api, params={"url": url}, timeout=timeout) as resp:
                if resp.status == 429:
                    self.events.emit("wayback:rate-limited", url=url, stage="availability")
                    return HistoryData(rate_limited=True, archive_url=archive_url)
                if resp.status >= 400:
                    self.events.emit("wayback:error", url=url, status=resp.status)
                    return ProbeFailure(self.category, FailureKind.SERVER_ERROR, f"availability API returned {resp.status}")
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            self.events.emit("wayback:error", url=url, error=repr(exc))
            return failure_from_exception(self.category, exc)

        snapshots = payload.get("archived_snapshots") if isinstance(payload, dict) else None
        closest = snapshots.get("closest") if isinstance(snapshots, dict) else None
        if not closest:
            self.events.emit("wayback:no-history", url=url)
            return HistoryData(wayback_machine_snapshots=0, archive_url=archive_url)

        return await self._count(url, archive_url, timeout)

    async def _count(self, url: str, archive_url: str, timeout: aiohttp.ClientTimeout) -> HistoryData:
        # Availability already proved history exists: anything short of a
        # proper count from here on is presumed throttling.
        params = {"url": url, "output": "json", "fl": "timestamp", "collapse": "timestamp:8"}
        rows = None
        try:
            async with self.session.get(self.cdx_api, params=params, timeout=timeout) as resp:
                if resp.status == 200:
                    rows = await resp.json(content_type=None)
                else:
                    self.events.emit("wayback:rate-limited", url=url, stage="cdx", status=resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            self.events.emit("wayback:rate-limited", url=url, stage="cdx", error=repr(exc))

        # First row is the header.
        captures = _timestamps(rows[1:]) if isinstance(rows, list) else []
        if not captures:
            if rows is not None:
                self.events.emit("wayback:cdx-empty-suspicious", url=url)
            return HistoryData(wayback_machine_snapshots=0, archive_url=archive_url, rate_limited=True)

        result = HistoryData(
            wayback_machine_snapshots=len(captures),
            first_seen=format_wayback_date(captures[0]),
            last_seen=format_wayback_date(captures[-1]),
            archive_url=archive_url,
        )
        self.events.emit("wayback:success", url=url, snapshots=result.wayback_machine_snapshots)
        return result
