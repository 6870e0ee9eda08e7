"""Header filtering for requests replayed outside the browser.

Pure logic, no I/O. The embedded engine exposes request headers that
differ from what it actually puts on the wire (client hints it adds
late, ``X-Requested-With`` from embedders), and it hides some it does
send. Replaying those headers verbatim from another HTTP stack gives
origin-side bot detection a fingerprint mismatch, which re-triggers
the challenge. Two policies exist:

- allow-list: keep only navigation-relevant headers, then synthesize
  the ``Accept-Language`` / ``Sec-Fetch-*`` values a browser would send
- block-list: keep everything except the headers known to trip
  detection

Names are compared case-insensitively; surviving headers keep their
original casing.
"""

import enum

ALLOWED_HEADERS = frozenset({
    "upgrade-insecure-requests",
    "user-agent",
    "accept",
    "sec-fetch-dest",
    "sec-fetch-site",
    "accept-language",
    "sec-fetch-mode",
    "cookie",
    "referer",
    "origin",
})

BLOCKED_HEADERS = frozenset({
    "sec-ch-ua",
    "sec-ch-ua-full-version-list",
    "x-requested-with",
})

DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Synthesized after allow-list filtering, in this order, when no header
# of that name survived.
_NAVIGATION_DEFAULTS = (
    ("sec-fetch-dest", "document"),
    ("sec-fetch-user", "?1"),
    ("sec-fetch-mode", "navigate"),
    ("sec-fetch-site", "none"),
)


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(k.lower() == name for k in headers)


def filter_allowed(
    headers: dict[str, str],
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
) -> dict[str, str]:
    """Keep allow-listed headers and fill in browser-plausible defaults."""
    filtered = {
        k: v for k, v in headers.items() if k.lower() in ALLOWED_HEADERS
    }
    if not _has_header(filtered, "accept-language"):
        filtered["accept-language"] = accept_language
    for name, value in _NAVIGATION_DEFAULTS:
        if not _has_header(filtered, name):
            filtered[name] = value
    return filtered


def filter_blocked(headers: dict[str, str]) -> dict[str, str]:
    """Drop block-listed headers, keep the rest untouched."""
    return {
        k: v for k, v in headers.items() if k.lower() not in BLOCKED_HEADERS
    }


class HeaderPolicy(enum.Enum):
    """How headers are rewritten before an out-of-band replay."""

    ALLOW_LIST = "allow_list"
    BLOCK_LIST = "block_list"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        if self is HeaderPolicy.ALLOW_LIST:
            return filter_allowed(headers)
        return filter_blocked(headers)
