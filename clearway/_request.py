"""Captured request records and capture-session configuration."""

import enum
import re
import types
from dataclasses import dataclass, field
from urllib.parse import unquote

DEFAULT_INTERCEPT_TIMEOUT_MS = 30_000
DEFAULT_MAX_REQUESTS = 100
# Quiet period after load that the capture helpers wait before finishing
DEFAULT_SETTLE_MS = 3_000


@dataclass(frozen=True)
class InterceptedRequest:
    """A request the browser made while a capture session was running.

    Immutable once built; ``headers`` is exposed as a read-only mapping.
    ``timestamp`` is wall-clock seconds (``time.time()``) at capture.
    """

    url: str
    method: str
    headers: types.MappingProxyType
    timestamp: float
    body: str | None = None

    def __post_init__(self):
        object.__setattr__(
            self, "headers", types.MappingProxyType(dict(self.headers))
        )
        object.__setattr__(self, "method", self.method.upper())

    def query_param(self, name: str) -> str | None:
        """Return the first percent-decoded value of ``name`` in the query."""
        _, sep, query = self.url.partition("?")
        if not sep or not query:
            return None
        query = query.split("#", 1)[0]
        for pair in query.split("&"):
            key, eq, value = pair.partition("=")
            if eq and key == name:
                return unquote(value)
        return None

    def url_matches(self, pattern: "str | re.Pattern[str]") -> bool:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        return pattern.search(self.url) is not None

    def url_contains(self, substring: str) -> bool:
        return substring.lower() in self.url.lower()

    def to_dict(self) -> dict:
        """Plain-dict view, as passed to page-side filter scripts."""
        return {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "timestamp": self.timestamp,
            "body": self.body,
        }


@dataclass(frozen=True)
class InterceptionConfig:
    """Options for one capture session.

    ``url_pattern`` is searched (not fully matched) against each URL;
    strings are compiled. ``filter_script`` is a JavaScript function
    taking the request record and returning a truthy value to keep it.
    ``page_script`` is injected once after the page first finishes
    loading. ``settle_ms`` ends the session that many milliseconds after
    the page finishes loading; ``None`` waits for the full timeout.
    """

    timeout_ms: int = DEFAULT_INTERCEPT_TIMEOUT_MS
    max_requests: int = DEFAULT_MAX_REQUESTS
    url_pattern: "re.Pattern[str] | None" = None
    filter_script: str | None = None
    page_script: str | None = None
    settle_ms: int | None = None

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_requests <= 0:
            raise ValueError(
                f"max_requests must be positive, got {self.max_requests}"
            )
        if isinstance(self.url_pattern, str):
            object.__setattr__(self, "url_pattern", re.compile(self.url_pattern))


class CompletionReason(enum.Enum):
    """Why a capture session ended."""

    TIMEOUT = "timeout"
    MAX_REACHED = "max_reached"
    MANUAL_STOP = "manual_stop"
    SETTLED = "settled"
    ERROR = "error"


@dataclass(frozen=True)
class CaptureResult:
    """Requests accepted by one capture session, in capture order."""

    requests: tuple[InterceptedRequest, ...]
    reason: CompletionReason
    error: BaseException | None = None
    faults: tuple[BaseException, ...] = field(default=())

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.requests]

    def __len__(self) -> int:
        return len(self.requests)
