import asyncio
import ssl
from dataclasses import dataclass, field
from enum import Enum

import aiohttp


class FetchCategory(str, Enum):
    """Categories that can fail independently during an inspection."""

    MAIN = "main"
    DNS = "dns"
    CERTIFICATE = "certificate"
    WAYBACK = "wayback"
    HOST_META = "hostMeta"
    ROBOTS = "robots"
    SITEMAP = "sitemap"
    LLMS_TXT = "llmsTxt"


class FailureKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    NOT_FOUND = "notFound"
    SERVER_ERROR = "serverError"
    INVALID = "invalid"
    RATE_LIMITED = "rateLimited"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_DESCRIPTIONS = {
    FetchCategory.MAIN: "Could not load the page",
    FetchCategory.DNS: "DNS lookup unavailable",
    FetchCategory.CERTIFICATE: "TLS certificate unavailable",
    FetchCategory.WAYBACK: "Archive history unavailable",
    FetchCategory.HOST_META: "Host metadata unavailable",
    FetchCategory.ROBOTS: "robots.txt could not be checked",
    FetchCategory.SITEMAP: "sitemap.xml could not be checked",
    FetchCategory.LLMS_TXT: "llms.txt could not be checked",
}


@dataclass(frozen=True)
class ProbeFailure:
    """
    Typed failure returned by a probe instead of raising.

    Fields:
        category     : Which probe failed.
        kind         : Coarse classification used for user messaging.
        message      : Technical detail (exception name and text, HTTP status, ...).
        recoverable  : Whether retrying later may succeed.
    """
    category: FetchCategory
    kind: FailureKind
    message: str
    recoverable: bool = True

    @property
    def description(self) -> str:
        base = _DESCRIPTIONS.get(self.category, "Probe failed")
        if self.kind is FailureKind.TIMEOUT:
            return f"{base} (timed out)"
        if self.kind is FailureKind.RATE_LIMITED:
            return f"{base} (rate limited)"
        if self.kind is FailureKind.CANCELLED:
            return f"{base} (cancelled)"
        return base


@dataclass
class HeadCapture:
    """
    Outcome of the primary-document probe.

    Fields:
        url          : The URL that was requested (after any HTTP fallback).
        final_url    : URL after redirects.
        status       : HTTP status code of the final response.
        headers      : Response headers, lowercased names, repeated values joined.
        head_html    : Captured markup, up to and including </head> when found.
        truncated    : True when capture stopped before the end of the body.
        bytes_read   : Number of body bytes consumed from the network.
        elapsed_ms   : Time until the capture finished.
        ttfb_ms      : Time until response headers arrived.
        redirects    : Redirect hops as {"source", "target", "status"} dicts.
    """
    url: str
    final_url: str
    status: int
    headers: dict[str, str]
    head_html: str
    truncated: bool
    bytes_read: int
    elapsed_ms: float
    ttfb_ms: float | None = None
    redirects: list[dict] = field(default_factory=list)


@dataclass
class ResourceCheck:
    """
    Outcome of an existence probe for a conventional text resource.

    `exists` is True only for a 2xx response that is not an HTML page.
    `body` is only kept when the caller asked for it (robots.txt).
    """
    url: str
    exists: bool
    status: int | None = None
    is_soft_404: bool = False
    content_type: str | None = None
    body: str | None = None


def failure_from_exception(category: FetchCategory, exc: BaseException, recoverable: bool = True) -> ProbeFailure:
    """Map a transport-level exception onto a ProbeFailure."""
    message = f"{type(exc).__name__}: {exc}".rstrip(": ")
    if isinstance(exc, asyncio.CancelledError):
        return ProbeFailure(category, FailureKind.CANCELLED, "cancelled", True)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return ProbeFailure(category, FailureKind.TIMEOUT, message, recoverable)
    if isinstance(exc, aiohttp.ClientResponseError):
        if exc.status == 429:
            return ProbeFailure(category, FailureKind.RATE_LIMITED, message, recoverable)
        if exc.status in (401, 403):
            return ProbeFailure(category, FailureKind.BLOCKED, message, recoverable)
        if exc.status == 404:
            return ProbeFailure(category, FailureKind.NOT_FOUND, message, recoverable)
        return ProbeFailure(category, FailureKind.SERVER_ERROR, message, recoverable)
    if isinstance(exc, (aiohttp.ClientConnectionError, ssl.SSLError, ConnectionError, OSError)):
        return ProbeFailure(category, FailureKind.NETWORK, message, recoverable)
    if isinstance(exc, (aiohttp.InvalidURL, ValueError)):
        return ProbeFailure(category, FailureKind.INVALID, message, recoverable)
    return ProbeFailure(category, FailureKind.UNKNOWN, message, recoverable)
