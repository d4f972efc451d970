"""
Signals module: reads protection and payment signals off the primary response.

The heuristics are:
- explicit
- header-first (markup is only a tie-breaker)
- easily auditable
"""

import re

from .models import BotProtectionData, PaymentSignals

PROVIDER_NAMES = {
    "cloudflare": "Cloudflare",
    "akamai": "Akamai",
    "sucuri": "Sucuri",
    "imperva": "Imperva",
    "datadome": "DataDome",
    "perimeterx": "PerimeterX",
    "vercel": "Vercel",
    "aws-waf": "AWS WAF",
}

CHALLENGE_STATUSES = {403, 429, 503}

CHALLENGE_TITLE_MARKERS = (
    "just a moment",
    "attention required",
    "access denied",
    "are you a robot",
    "verify you are human",
    "security check",
    "pardon our interruption",
)

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)


def _title(head_html: str) -> str:
    match = _TITLE_RE.search(head_html or "")
    return match.group(1).strip().lower() if match else ""


def _provider(headers: dict[str, str], head_html: str) -> str | None:
    server = headers.get("server", "").lower()
    cookies = headers.get("set-cookie", "").lower()
    lower_html = (head_html or "").lower()

    if "cf-ray" in headers or "cf-mitigated" in headers or "cloudflare" in server:
        return "cloudflare"
    if "x-vercel-mitigated" in headers:
        return "vercel"
    if "x-amzn-waf-action" in headers:
        return "aws-waf"
    if "x-datadome" in headers or "datadome=" in cookies:
        return "datadome"
    if "x-sucuri-id" in headers or "sucuri" in server:
        return "sucuri"
    if "x-iinfo" in headers or "incapsula" in headers.get("x-cdn", "").lower() or "incap_ses" in cookies or "visid_incap" in cookies:
        return "imperva"
    if "_pxhd" in cookies or "_pxappid" in lower_html or "px-captcha" in lower_html:
        return "perimeterx"
    if "akamaighost" in server or "akamai-grn" in headers or "x-akamai-transformed" in headers:
        return "akamai"
    return None


def _is_challenge(provider: str | None, status: int, headers: dict[str, str], head_html: str) -> bool:
    if headers.get("cf-mitigated", "").lower() == "challenge":
        return True
    if headers.get("x-vercel-mitigated", "").lower() in ("challenge", "deny"):
        return True
    if headers.get("x-amzn-waf-action", "").lower() in ("challenge", "captcha"):
        return True

    lower_html = (head_html or "").lower()
    if "_incapsula_resource" in lower_html or "px-captcha" in lower_html or "captcha-delivery.com" in lower_html:
        return True

    if status not in CHALLENGE_STATUSES:
        return False
    title = _title(head_html)
    if any(marker in title for marker in CHALLENGE_TITLE_MARKERS):
        return True
    # A protection layer answering 403/503 is itself the challenge.
    return provider is not None and status in (403, 503)


def detect_bot_protection(status: int, headers: dict[str, str], head_html: str) -> BotProtectionData:
    """
    Identify the protection provider in front of a site and whether the
    response is a challenge page rather than real content.

    `headers` must use lowercase names.
    """
    provider = _provider(headers, head_html)
    challenge = _is_challenge(provider, status, headers, head_html)
    return BotProtectionData(
        detected=provider is not None or challenge,
        provider=provider,
        provider_name=PROVIDER_NAMES.get(provider) if provider else None,
        is_challenge_page=challenge,
    )


def detect_payment_signals(status: int, headers: dict[str, str]) -> PaymentSignals:
    required = headers.get("payment-required")
    response = headers.get("payment-response")
    return PaymentSignals(
        detected=status == 402 or required is not None or response is not None,
        status_code_402=status == 402,
        payment_required=required is not None,
        payment_response=response is not None,
        payment_required_raw=required,
        payment_response_raw=response,
    )
