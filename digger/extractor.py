"""
Document head extraction.

Pure functions over captured <head> markup; each returns one Report section
so the orchestrator can publish sections as they become ready.
"""

import json
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .fonts import deduplicate_fonts, font_from_preload, fonts_from_url
from .models import (
    AlternateLink,
    DataFeedsData,
    DiscoverabilityData,
    FeedLink,
    ImageAsset,
    LinkRef,
    MetadataData,
    MetaTag,
    OverviewData,
    ResourcesData,
    Script,
    Stylesheet,
)
from .urls import root_resource_url

FEED_TYPES = {
    "application/rss+xml": "rss",
    "application/atom+xml": "atom",
    "application/json": "json_feeds",
    "application/feed+json": "json_feeds",
}

_LANG_RE = re.compile(r"<html[^>]*\slang=[\"']([^\"']+)[\"']", re.I)


def parse_head(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _rel(tag) -> str:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return " ".join(r.lower() for r in rel)


def _first_link(soup, rel_value: str):
    for tag in soup.find_all("link", href=True):
        if rel_value in _rel(tag).split():
            return tag
    return None


def _meta(soup, **attrs) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    return tag.get("content") or None


def _meta_ci(soup, attr: str, value: str) -> str | None:
    tag = soup.find("meta", attrs={attr: re.compile(f"^{re.escape(value)}$", re.I)})
    return (tag.get("content") or None) if tag is not None else None


def _absolute(href: str | None, base_url: str) -> str | None:
    """Resolve `href` against the page URL; unparsable hrefs are kept as written."""
    if href is None:
        return None
    href = href.strip()
    try:
        return urljoin(base_url, href)
    except ValueError:
        return href


def extract_overview(soup: BeautifulSoup, raw_html: str, base_url: str) -> OverviewData:
    title = soup.title.get_text(strip=True) if soup.title else None
    html_tag = soup.find("html")
    language = html_tag.get("lang") if html_tag is not None else None
    if not language:
        match = _LANG_RE.search(raw_html or "")
        language = match.group(1) if match else None

    charset_tag = soup.find("meta", attrs={"charset": True})
    charset = charset_tag.get("charset") if charset_tag is not None else None
    if not charset:
        content_type = _meta_ci(soup, "http-equiv", "content-type") or ""
        match = re.search(r"charset=([\w-]+)", content_type, re.I)
        charset = match.group(1) if match else None

    icon = _first_link(soup, "icon")
    favicon = _absolute(icon.get("href"), base_url) if icon is not None else root_resource_url("favicon.ico", base_url)

    return OverviewData(
        title=title or None,
        description=_meta_ci(soup, "name", "description"),
        favicon=favicon,
        language=language,
        charset=charset,
    )


def _json_ld(soup: BeautifulSoup) -> list[dict]:
    blocks = []
    for tag in soup.find_all("script", attrs={"type": re.compile(r"^application/ld\+json", re.I)}):
        try:
            data = json.loads(tag.string or tag.get_text() or "")
        except ValueError:
            continue
        items = data if isinstance(data, list) else [data]
        blocks.extend(item for item in items if isinstance(item, dict))
    return blocks


def extract_metadata(soup: BeautifulSoup) -> MetadataData:
    open_graph = {}
    for tag in soup.find_all("meta", attrs={"property": re.compile(r"^og:", re.I)}):
        if tag.get("content"):
            open_graph[tag["property"]] = tag["content"]

    twitter_card = {}
    for tag in soup.find_all("meta", attrs={"name": re.compile(r"^twitter:", re.I)}):
        if tag.get("content"):
            twitter_card[tag["name"]] = tag["content"]

    meta_tags = []
    for tag in soup.find_all("meta"):
        name, prop, content = tag.get("name"), tag.get("property"), tag.get("content")
        if (name or prop) and content:
            meta_tags.append(MetaTag(name=name, property=prop, content=content))

    json_ld = _json_ld(soup)
    return MetadataData(
        open_graph=open_graph or None,
        twitter_card=twitter_card or None,
        json_ld=json_ld or None,
        meta_tags=meta_tags or None,
    )


def extract_discoverability(soup: BeautifulSoup, base_url: str) -> DiscoverabilityData:
    """Head-derived discoverability fields; robots.txt / sitemap / llms.txt are merged in by the caller."""
    canonical = _first_link(soup, "canonical")
    alternates = []
    for tag in soup.find_all("link"):
        if "alternate" not in _rel(tag).split() or not tag.get("href"):
            continue
        type_ = (tag.get("type") or "").lower()
        if type_ in FEED_TYPES:
            continue
        alternates.append(AlternateLink(href=tag["href"], hreflang=tag.get("hreflang"), type=tag.get("type")))

    return DiscoverabilityData(
        robots=_meta_ci(soup, "name", "robots"),
        canonical=canonical.get("href") if canonical is not None else None,
        alternates=alternates or None,
    )


def _json_ld_images(blocks: list[dict], base_url: str) -> list[ImageAsset]:
    images = []
    for block in blocks:
        for key in ("image", "logo"):
            value = block.get(key)
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, dict):
                    item = item.get("url") or item.get("contentUrl")
                if isinstance(item, str) and item:
                    images.append(ImageAsset(src=_absolute(item, base_url), type="json-ld"))
    return images


def _images(soup: BeautifulSoup, base_url: str) -> list[ImageAsset]:
    images = []
    for tag in soup.find_all("link", href=True):
        rel = _rel(tag).split()
        if "apple-touch-icon" in rel or "apple-touch-icon-precomposed" in rel:
            kind = "apple-touch-icon"
        elif "mask-icon" in rel:
            kind = "mask-icon"
        elif "icon" in rel:
            kind = "favicon"
        else:
            continue
        images.append(
            ImageAsset(src=_absolute(tag["href"], base_url), type=kind, sizes=tag.get("sizes"), mime_type=tag.get("type"))
        )

    for value, kind in (
        (_meta(soup, property="og:image"), "og"),
        (_meta(soup, name="twitter:image"), "twitter"),
        (_meta_ci(soup, "name", "msapplication-TileImage"), "msapplication"),
    ):
        if value:
            alt = _meta(soup, property="og:image:alt") if kind == "og" else None
            images.append(ImageAsset(src=_absolute(value, base_url), type=kind, alt=alt))

    images.extend(_json_ld_images(_json_ld(soup), base_url))
    return images


def extract_resources(soup: BeautifulSoup, base_url: str, max_resources: int = 50) -> ResourcesData:
    stylesheets, links, fonts = [], [], []
    for tag in soup.find_all("link", href=True):
        rel = _rel(tag).split()
        href = tag["href"]
        if "stylesheet" in rel:
            if len(stylesheets) < max_resources:
                stylesheets.append(Stylesheet(href=href, media=tag.get("media")))
            fonts.extend(fonts_from_url(_absolute(href, base_url)))
            continue
        if "preload" in rel and (tag.get("as") or "").lower() == "font":
            fonts.append(font_from_preload(_absolute(href, base_url), tag.get("type")))
        if "alternate" in rel:
            continue
        if len(links) < max_resources:
            links.append(LinkRef(href=href, rel=" ".join(rel) or None))

    scripts = []
    for tag in soup.find_all("script", src=True)[:max_resources]:
        scripts.append(
            Script(src=tag["src"], is_async=tag.has_attr("async"), defer=tag.has_attr("defer"), type=tag.get("type"))
        )

    images = _images(soup, base_url)[:max_resources]
    fonts = deduplicate_fonts(fonts)

    return ResourcesData(
        stylesheets=stylesheets or None,
        scripts=scripts or None,
        images=images or None,
        links=links or None,
        theme_color=_meta_ci(soup, "name", "theme-color"),
        fonts=fonts or None,
    )


def extract_data_feeds(soup: BeautifulSoup, base_url: str) -> DataFeedsData | None:
    feeds: dict[str, list[FeedLink]] = {"rss": [], "atom": [], "json_feeds": []}
    for tag in soup.find_all("link", href=True):
        kind = FEED_TYPES.get((tag.get("type") or "").lower())
        if kind is None:
            continue
        feeds[kind].append(FeedLink(url=_absolute(tag["href"], base_url), title=tag.get("title")))

    if not any(feeds.values()):
        return None
    return DataFeedsData(**{k: (v or None) for k, v in feeds.items()})
