import logging
import re
from urllib.parse import parse_qs, urlsplit

from .models import FontAsset

logger = logging.getLogger(__name__)

# (pattern, provider id, display name)
FONT_PROVIDER_PATTERNS = [
    (re.compile(r"fonts\.googleapis\.com", re.I), "google-fonts", "Google Fonts"),
    (re.compile(r"fonts\.gstatic\.com", re.I), "google-fonts", "Google Fonts"),
    (re.compile(r"use\.typekit\.net", re.I), "adobe-fonts", "Adobe Fonts"),
    (re.compile(r"typekit\.com", re.I), "adobe-fonts", "Adobe Fonts"),
    (re.compile(r"use\.fontawesome\.com", re.I), "font-awesome", "Font Awesome"),
    (re.compile(r"cdnjs\.cloudflare\.com/ajax/libs/font-awesome", re.I), "font-awesome", "Font Awesome"),
    (re.compile(r"kit\.fontawesome\.com", re.I), "font-awesome", "Font Awesome"),
    (re.compile(r"fonts\.bunny\.net", re.I), "bunny-fonts", "Bunny Fonts"),
    (re.compile(r"api\.fontshare\.com", re.I), "fontshare", "Fontshare"),
    (re.compile(r"fast\.fonts\.net", re.I), "fonts-com", "Fonts.com"),
]

FONT_EXTENSIONS = ("woff2", "woff", "ttf", "otf", "eot")


def detect_font_provider(url: str) -> tuple[str, str] | None:
    for pattern, provider, name in FONT_PROVIDER_PATTERNS:
        if pattern.search(url):
            return provider, name
    return None


def extract_google_fonts(url: str, provider: str = "google-fonts") -> list[FontAsset]:
    """
    Families from a Google-Fonts style URL.

    CSS2:   /css2?family=Roboto:wght@400;700&family=Open+Sans
    Legacy: /css?family=Roboto:400,700|Open+Sans:300
    """
    fonts = []
    for family_param in parse_qs(urlsplit(url).query).get("family", []):
        for family in family_param.split("|"):
            name, _, variants_part = family.partition(":")
            name = name.strip()
            if not name:
                continue
            if "@" in variants_part:
                weights = variants_part.split("@", 1)[1].split(";")
                variants = [w.split(",")[-1] for w in weights]
            else:
                variants = variants_part.split(",") if variants_part else []
            variants = [v for v in variants if v.isdigit()]
            fonts.append(FontAsset(family=name, provider=provider, url=url, variants=variants or None))
    return fonts


def extract_adobe_fonts(url: str) -> list[FontAsset]:
    # Adobe only exposes a project id, never family names.
    match = re.search(r"/([a-z0-9]+)\.css$", urlsplit(url).path, re.I)
    if not match:
        return []
    return [FontAsset(family=f"Adobe Fonts Project ({match.group(1)})", provider="adobe-fonts", url=url)]


def font_from_preload(href: str, type_: str | None = None) -> FontAsset:
    """Font asset from <link rel="preload" as="font">; family guessed from the file name."""
    try:
        path = urlsplit(href).path
    except ValueError:
        path = href.split("?", 1)[0]
    filename = path.rsplit("/", 1)[-1]
    stem = re.sub(r"\.(woff2?|ttf|otf|eot)$", "", filename, flags=re.I)
    family = " ".join(word.capitalize() for word in re.split(r"[-_ ]+", stem) if word) or "Custom Font"

    fmt = None
    if type_:
        fmt = type_.replace("font/", "")
    else:
        lower = href.lower()
        fmt = next((ext for ext in FONT_EXTENSIONS if f".{ext}" in lower), None)

    style = "italic" if "italic" in stem.lower() else None
    return FontAsset(family=family, provider="custom", url=href, format=fmt, style=style)


def fonts_from_url(url: str) -> list[FontAsset]:
    detected = detect_font_provider(url)
    if detected is None:
        return []
    provider, name = detected
    try:
        if provider in ("google-fonts", "bunny-fonts"):
            return extract_google_fonts(url, provider)
        if provider == "adobe-fonts":
            return extract_adobe_fonts(url)
    except ValueError:
        logger.debug("fonts: unparsable stylesheet url %r", url)
        return []
    if provider == "font-awesome":
        return [FontAsset(family="Font Awesome", provider=provider, url=url)]
    return [FontAsset(family=name, provider=provider, url=url)]


def deduplicate_fonts(fonts: list[FontAsset]) -> list[FontAsset]:
    """Merge fonts sharing provider and family; variants are unioned and sorted numerically."""
    seen: dict[tuple[str, str], FontAsset] = {}
    for font in fonts:
        key = (font.provider, font.family)
        existing = seen.get(key)
        if existing is None:
            seen[key] = font
            continue
        if font.variants:
            merged = sorted(set(existing.variants or []) | set(font.variants), key=int)
            seen[key] = existing.model_copy(update={"variants": merged})
    logger.debug("fonts: %d in, %d after dedupe", len(fonts), len(seen))
    return list(seen.values())
