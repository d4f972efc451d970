import asyncio
import json
import xml.etree.ElementTree as ET

import aiohttp

from .events import EventSink
from .models import HostLink, HostMetadataData
from .results import FetchCategory, ProbeFailure, failure_from_exception
from .settings import DiggerConfig
from .text_resources import looks_like_html
from .urls import root_resource_url

HOST_META_PATH = ".well-known/host-meta"
HOST_META_JSON_PATH = ".well-known/host-meta.json"

NOT_PUBLISHED = HostMetadataData(available=False)


def _local(tag) -> str:
    return str(tag).rsplit("}", 1)[-1].lower()


def parse_xrd(text: str) -> HostMetadataData | None:
    """Parse an XRD host-meta document; None when it is not XRD."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError:
        return None
    if _local(root.tag) != "xrd":
        return None

    properties: dict[str, str | None] = {}
    links = []
    for child in root:
        name = _local(child.tag)
        if name == "property" and child.get("type"):
            properties[child.get("type")] = (child.text or "").strip() or None
        elif name == "link" and child.get("rel"):
            title = next((t.text.strip() for t in child if _local(t.tag) == "title" and t.text), None)
            links.append(
                HostLink(
                    rel=child.get("rel"),
                    href=child.get("href"),
                    template=child.get("template"),
                    type=child.get("type"),
                    title=title,
                )
            )
    return HostMetadataData(available=True, properties=properties or None, links=links or None, format="xrd")


def parse_jrd(text: str) -> HostMetadataData | None:
    """Parse a JRD (JSON) host-meta document; None when it is not JRD."""
    try:
        doc = json.loads(text)
    except ValueError:
        return None
    if not isinstance(doc, dict):
        return None

    raw_props = doc.get("properties")
    properties = {str(k): (None if v is None else str(v)) for k, v in raw_props.items()} if isinstance(raw_props, dict) else {}
    links = []
    for link in doc.get("links") or []:
        if not isinstance(link, dict) or not link.get("rel"):
            continue
        titles = link.get("titles")
        title = None
        if isinstance(titles, dict) and titles:
            title = titles.get("en") or titles.get("und") or next(iter(titles.values()))
        links.append(
            HostLink(
                rel=str(link["rel"]),
                href=link.get("href"),
                template=link.get("template"),
                type=link.get("type"),
                title=title,
            )
        )
    return HostMetadataData(available=True, properties=properties or None, links=links or None, format="jrd")


class HostMetaProbe:
    """
    Fetch RFC 6415 host metadata: XRD at /.well-known/host-meta, then JRD at
    /.well-known/host-meta.json. Not publishing either is a normal outcome.
    """
    category = FetchCategory.HOST_META

    def __init__(self, session: aiohttp.ClientSession, config: DiggerConfig, events: EventSink | None = None):
        self.session = session
        self.config = config
        self.events = events or EventSink("hostMeta")

    async def _fetch(self, url: str) -> str | None:
        timeout = aiohttp.ClientTimeout(total=self.config.host_meta_timeout_s)
        headers = {"User-Agent": self.config.user_agent, "Accept": "application/xrd+xml, application/json;q=0.9, */*;q=0.5"}
        async with self.session.get(url, headers=headers, timeout=timeout, allow_redirects=True) as resp:
            if not 200 <= resp.status < 300:
                return None
            body = await resp.text(errors="replace")
            if looks_like_html(resp.headers.get("Content-Type"), body[:1024].encode("utf-8", errors="replace")):
                return None
            return body

    async def run(self, base_url: str) -> HostMetadataData | ProbeFailure:
        self.events.emit("hostmeta:start", url=base_url)
        try:
            text = await self._fetch(root_resource_url(HOST_META_PATH, base_url))
            parsed = None
            if text is not None:
                parsed = parse_xrd(text) or parse_jrd(text)
            if parsed is None:
                text = await self._fetch(root_resource_url(HOST_META_JSON_PATH, base_url))
                if text is not None:
                    parsed = parse_jrd(text)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            self.events.emit("hostmeta:error", url=base_url, error=repr(exc))
            return failure_from_exception(self.category, exc)

        if parsed is None:
            self.events.emit("hostmeta:absent", url=base_url)
            return NOT_PUBLISHED
        self.events.emit("hostmeta:complete", url=base_url, format=parsed.format, links=len(parsed.links or []))
        return parsed
