import re
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidUrl

DEFAULT_SCHEME = "https"
ALLOWED_SCHEMES = {"http", "https"}

# Characters commonly dragged along when a URL is copied out of prose.
TRAILING_PUNCTUATION = ".,;:!?'\")]}>"

_HOST_RE = re.compile(r"^[a-z0-9_\-\.\[\]:]+$")


def normalize_url(raw: str) -> str:
    """
    Canonicalize free-form input into a fully qualified http(s) URL.

    - surrounding whitespace and trailing punctuation are stripped
    - "https" is assumed when no scheme is given
    - scheme and host are lowercased, credentials and fragment are dropped
    - a bare "/" path is removed so "example.com/" and "example.com" share a key

    Raises InvalidUrl when the result is not an http(s) URL with a host.
    """
    if not isinstance(raw, str):
        raise InvalidUrl(repr(raw), "expected a string")

    text = raw.strip().rstrip(TRAILING_PUNCTUATION).strip()
    if not text or any(ch.isspace() for ch in text):
        raise InvalidUrl(raw)

    if "://" not in text:
        if text.startswith("//"):
            text = text[2:]
        text = f"{DEFAULT_SCHEME}://{text}"

    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrl(raw, str(exc)) from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrl(raw, f"unsupported scheme {scheme!r}")

    host = (parts.hostname or "").rstrip(".")
    if not host or not _HOST_RE.match(host) or ".." in host:
        raise InvalidUrl(raw, "missing or malformed host")

    if ":" in host:
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port is not None else host

    path = parts.path
    if path == "/" and not parts.query:
        path = ""

    return urlunsplit((scheme, netloc, path, parts.query, ""))


def origin_of(url: str) -> str:
    """
    Normalize a URL to its origin: scheme://host[:port]
    """
    parts = urlsplit(url)
    scheme = parts.scheme or DEFAULT_SCHEME
    return f"{scheme}://{parts.netloc}"


def root_resource_url(name: str, url: str) -> str:
    """URL of a conventional resource (robots.txt, sitemap.xml, ...) at the site root."""
    return f"{origin_of(url)}/{name.lstrip('/')}"


def host_of(url: str) -> str:
    return urlsplit(url).hostname or ""


def with_scheme(url: str, scheme: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))
