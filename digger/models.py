"""
Report data model.

A Report is the aggregate result for one URL: one optional section per
category. All models are frozen; the orchestrator assembles successive
partial Reports and only the final one is cached.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class OverviewData(Section):
    title: str | None = None
    description: str | None = None
    favicon: str | None = None
    language: str | None = None
    charset: str | None = None


class MetaTag(Section):
    name: str | None = None
    property: str | None = None
    content: str | None = None


class MetadataData(Section):
    open_graph: dict[str, str] | None = None
    twitter_card: dict[str, str] | None = None
    json_ld: list[dict[str, Any]] | None = None
    meta_tags: list[MetaTag] | None = None


class AlternateLink(Section):
    href: str
    hreflang: str | None = None
    type: str | None = None


class ContentSignals(Section):
    """Content-Signal directive values from robots.txt."""
    search: str | None = None
    ai_input: str | None = None
    ai_train: str | None = None
    raw: str | None = None


class PaymentSignals(Section):
    """x402 evidence: HTTP 402, PAYMENT-REQUIRED and PAYMENT-RESPONSE headers."""
    detected: bool = False
    status_code_402: bool = False
    payment_required: bool = False
    payment_response: bool = False
    payment_required_raw: str | None = None
    payment_response_raw: str | None = None


class DiscoverabilityData(Section):
    robots: str | None = None
    robots_txt: bool | None = None
    canonical: str | None = None
    alternates: list[AlternateLink] | None = None
    sitemap: str | None = None
    llms_txt: bool | None = None
    content_signals: ContentSignals | None = None
    payment_signals: PaymentSignals | None = None


class Stylesheet(Section):
    href: str
    media: str | None = None


class Script(Section):
    src: str
    is_async: bool = False
    defer: bool = False
    type: str | None = None


class ImageAsset(Section):
    src: str
    type: str
    alt: str | None = None
    sizes: str | None = None
    mime_type: str | None = None


class LinkRef(Section):
    href: str
    rel: str | None = None


class FontAsset(Section):
    family: str
    provider: str
    url: str
    variants: list[str] | None = None
    format: str | None = None
    style: str | None = None


class ResourcesData(Section):
    stylesheets: list[Stylesheet] | None = None
    scripts: list[Script] | None = None
    images: list[ImageAsset] | None = None
    links: list[LinkRef] | None = None
    theme_color: str | None = None
    fonts: list[FontAsset] | None = None


class Redirect(Section):
    source: str
    target: str
    status: int


class NetworkingData(Section):
    """status_code and headers always come from the same response."""
    ip_address: str | None = None
    server: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    status_code: int
    redirects: list[Redirect] | None = None
    final_url: str | None = None


class MxRecord(Section):
    priority: int
    exchange: str


class DNSData(Section):
    available: bool = True
    a_records: list[str] | None = None
    aaaa_records: list[str] | None = None
    mx_records: list[MxRecord] | None = None
    txt_records: list[str] | None = None
    ns_records: list[str] | None = None
    cname_record: str | None = None
    error: str | None = None


class CertificateData(Section):
    available: bool = True
    issuer: str | None = None
    subject: str | None = None
    valid_from: str | None = None
    valid_to: str | None = None
    days_remaining: int | None = None
    subject_alt_names: list[str] | None = None
    protocol: str | None = None
    verified: bool = True
    verification_error: str | None = None
    error: str | None = None


class PerformanceData(Section):
    load_time_ms: float | None = None
    ttfb_ms: float | None = None
    page_size: int | None = None
    bytes_read: int | None = None
    truncated: bool = False


class HistoryData(Section):
    """
    Web-archive history.

    `rate_limited` means the archive throttled us; it never means "no history".
    `wayback_machine_snapshots` is None when no count could be obtained.
    """
    available: bool = True
    wayback_machine_snapshots: int | None = None
    first_seen: str | None = None
    last_seen: str | None = None
    archive_url: str | None = None
    rate_limited: bool = False
    error: str | None = None


class FeedLink(Section):
    url: str
    title: str | None = None


class DataFeedsData(Section):
    rss: list[FeedLink] | None = None
    atom: list[FeedLink] | None = None
    json_feeds: list[FeedLink] | None = None


class HostLink(Section):
    rel: str
    href: str | None = None
    template: str | None = None
    type: str | None = None
    title: str | None = None


class HostMetadataData(Section):
    """RFC 6415 host metadata. available=False with no error means "not published"."""
    available: bool
    properties: dict[str, str | None] | None = None
    links: list[HostLink] | None = None
    format: str | None = None
    error: str | None = None


class BotProtectionData(Section):
    detected: bool
    provider: str | None = None
    provider_name: str | None = None
    is_challenge_page: bool = False


class FetchError(Section):
    category: str
    kind: str
    message: str
    description: str
    recoverable: bool
    timestamp: float


class Report(Section):
    url: str
    fetched_at: float
    overview: OverviewData | None = None
    metadata: MetadataData | None = None
    discoverability: DiscoverabilityData | None = None
    resources: ResourcesData | None = None
    networking: NetworkingData | None = None
    dns: DNSData | None = None
    certificate: CertificateData | None = None
    performance: PerformanceData | None = None
    history: HistoryData | None = None
    data_feeds: DataFeedsData | None = None
    host_metadata: HostMetadataData | None = None
    bot_protection: BotProtectionData | None = None
    errors: list[FetchError] = Field(default_factory=list)


class CacheEntry(Section):
    url: str
    data: Report
    timestamp: float
    last_accessed: float
