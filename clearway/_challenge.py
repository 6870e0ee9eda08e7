"""Protection detection for direct HTTP responses.

Pure logic, no I/O. Request-fetching code calls ``detect_protection()``
on a response it fetched itself; a CAPTCHA verdict means the browser
engine should be asked to clear the challenge, BLOCKED means no amount
of browser work will help.
"""

import enum
import logging
from urllib.parse import urlparse

logger = logging.getLogger("clearway")

CLEARANCE_COOKIE = "cf_clearance"


class Protection(enum.Enum):
    """Verdict for a response that looks like a Cloudflare gate."""

    CAPTCHA = "captcha"
    BLOCKED = "blocked"


def detect_protection(
    status_code: int, headers: dict[str, str], body: str
) -> Protection | None:
    """Classify a response as a solvable challenge, a hard block, or neither.

    Args:
        status_code: HTTP status code.
        headers: Response headers with lowercase keys.
        body: Decoded response body.
    """
    if headers.get("cf-mitigated") == "challenge":
        logger.info("Protection detected (header): captcha")
        return Protection.CAPTCHA

    # Cloudflare serves both challenges and blocks on 403 / 503 only
    if status_code not in (403, 503):
        return None

    if (
        'id="challenge-error-title"' in body
        or 'id="challenge-error-text"' in body
        or "window._cf_chl_opt" in body
        or "_cf_chl_ctx" in body
        or "challenge-form" in body
    ):
        logger.info("Protection detected (body): captcha")
        return Protection.CAPTCHA

    if 'id="af-error-container"' in body or 'id="cf-error-details"' in body:
        logger.info("Protection detected (body): blocked")
        return Protection.BLOCKED

    return None


def _domain_matches(host: str, cookie_domain: str) -> bool:
    cookie_domain = cookie_domain.lstrip(".").lower()
    return host == cookie_domain or host.endswith("." + cookie_domain)


def get_clearance_cookie(
    cookies: list[dict], url: str, name: str = CLEARANCE_COOKIE
) -> str | None:
    """Find the clearance cookie applicable to ``url``.

    ``cookies`` uses the browser cookie dict format
    (``{"name", "value", "domain", ...}``). Cookies without a domain
    are assumed to belong to ``url``.
    """
    host = (urlparse(url).hostname or "").lower()
    for cookie in cookies:
        if cookie.get("name") != name:
            continue
        domain = cookie.get("domain", "")
        if not domain or _domain_matches(host, domain):
            return cookie.get("value")
    return None
