class DiggerError(Exception):
    """Base class for errors that halt an inspection."""


class InvalidUrl(DiggerError, ValueError):
    """The input cannot be turned into an http(s) URL. Raised before any network activity."""

    def __init__(self, raw: str, reason: str = "not a valid http(s) URL"):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid URL {raw!r}: {reason}")


class FetchFailed(DiggerError):
    """
    The primary document could not be fetched over HTTPS nor over HTTP.

    Attributes:
        url      : Normalized URL that was inspected.
        failure  : ProbeFailure of the primary-document probe.
        partial  : Best-effort Report built before the failure (never cached).
    """

    def __init__(self, url: str, failure, partial=None):
        self.url = url
        self.failure = failure
        self.partial = partial
        super().__init__(f"Failed to fetch {url}: {failure.message}")
