"""Out-of-band replay of browser requests over rnet.

The browser engine does not expose response bodies to request hooks, so
a request that must be observed (or re-fingerprinted) is issued again
from an rnet client with filtered headers, and the result is handed
back to the engine as a substitute response.

Replays never raise: any transport fault returns ``None`` so the engine
falls back to its own network stack.
"""

import datetime
import http
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from rnet import Method

from clearway._headers import HeaderPolicy

logger = logging.getLogger("clearway")

REPLAY_TIMEOUT = datetime.timedelta(seconds=15)

DEFAULT_MIME_TYPE = "text/html"
DEFAULT_CHARSET = "UTF-8"

_METHOD_MAP: dict[str, Method] = {
    "GET": Method.GET,
    "HEAD": Method.HEAD,
    "OPTIONS": Method.OPTIONS,
    "PUT": Method.PUT,
    "DELETE": Method.DELETE,
    "PATCH": Method.PATCH,
}


@dataclass
class ReplayedResponse:
    """Substitute response produced by an out-of-band replay."""

    url: str
    status: int
    mime_type: str
    charset: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    reason: str = ""


def parse_content_type(value: str | None) -> tuple[str, str]:
    """Split a Content-Type header into ``(mime_type, charset)``.

    Falls back to ``text/html`` / ``UTF-8`` when the header is absent or
    its media type is malformed; a valid media type without a charset
    parameter gets ``UTF-8``.
    """
    if not value:
        return DEFAULT_MIME_TYPE, DEFAULT_CHARSET
    parts = value.split(";")
    mime_type = parts[0].strip().lower()
    if "/" not in mime_type or mime_type.startswith("/") or mime_type.endswith("/"):
        return DEFAULT_MIME_TYPE, DEFAULT_CHARSET
    charset = DEFAULT_CHARSET
    for param in parts[1:]:
        key, _, val = param.partition("=")
        if key.strip().lower() == "charset" and val.strip():
            charset = val.strip().strip('"')
            break
    return mime_type, charset


def _reason_phrase(status: int) -> str:
    try:
        return http.HTTPStatus(status).phrase
    except ValueError:
        return ""


def _decode_headers(header_map) -> dict[str, str]:
    """Decode an rnet HeaderMap to a lowercase string dict.

    Repeated headers are joined with newlines, which is how the browser
    engine expects multi-value headers (Set-Cookie above all) in a
    fulfilled response.
    """
    result: dict[str, str] = {}
    for raw_key in header_map.keys():
        k = raw_key.decode("ascii", errors="replace").lower()
        values = [
            v.decode("utf-8", errors="replace") if isinstance(v, bytes) else str(v)
            for v in header_map.get_all(k)
        ]
        result[k] = "\n".join(values)
    return result


class ReplayClient:
    """Issues filtered replays through a lazily built rnet client.

    One rnet client is shared by every replay; it carries no cookie
    store because cookies travel in the browser's own ``Cookie`` header.
    """

    def __init__(
        self,
        timeout: datetime.timedelta = REPLAY_TIMEOUT,
        emulation=None,
    ):
        self._timeout = timeout
        self._emulation = emulation
        self._client = None
        self._lock = threading.Lock()

    def _ensure_client(self):
        with self._lock:
            if self._client is None:
                import rnet.blocking

                kwargs = {
                    "connect_timeout": self._timeout,
                    "timeout": self._timeout,
                }
                if self._emulation is not None:
                    kwargs["emulation"] = self._emulation
                self._client = rnet.blocking.Client(**kwargs)
            return self._client

    def replay(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        policy: HeaderPolicy,
    ) -> ReplayedResponse | None:
        """Replay a browser request; ``None`` means use the browser's stack."""
        method = method.upper()
        if method == "POST":
            logger.debug("Skipping replay of POST %s", url)
            return None
        m = _METHOD_MAP.get(method)
        if m is None:
            logger.debug("Skipping replay of unsupported method %s", method)
            return None

        filtered = policy.apply(headers)
        dropped = sorted(k for k in headers if k not in filtered)
        if dropped:
            logger.debug("Replay of %s dropped headers: %s", url, ", ".join(dropped))

        try:
            client = self._ensure_client()
            resp = client.request(m, url, headers=filtered)
            status = resp.status.as_int()
            resp_headers = _decode_headers(resp.headers)
            body = resp.bytes()
        except Exception:
            logger.debug("Replay failed for %s", url, exc_info=True)
            return None

        mime_type, charset = parse_content_type(resp_headers.get("content-type"))
        logger.debug(
            "Replayed %s %s -> %d (%s, %d bytes)",
            method, url, status, mime_type, len(body),
        )
        return ReplayedResponse(
            url=url,
            status=status,
            mime_type=mime_type,
            charset=charset,
            headers=resp_headers,
            body=body,
            reason=_reason_phrase(status),
        )


_pool: ThreadPoolExecutor | None = None
_pool_lock = threading.Lock()
_default_client = ReplayClient()

# Upper bound on replays in flight. The sync route handler waits on each
# replay, so one surface never has more than one outstanding; the bound
# only matters for callers submitting directly.
REPLAY_WORKERS = 32


def submit_replay(
    method: str,
    url: str,
    headers: dict[str, str],
    policy: HeaderPolicy,
    client: ReplayClient | None = None,
) -> Future:
    """Run a replay on the shared worker pool, independent of the surface.

    Up to ``REPLAY_WORKERS`` replays run at once; further submissions queue
    until a worker frees up, each still bounded by ``REPLAY_TIMEOUT``.
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(
                max_workers=REPLAY_WORKERS,
                thread_name_prefix="clearway-replay",
            )
    return _pool.submit(
        (client or _default_client).replay, method, url, headers, policy
    )


def replay_request(
    method: str,
    url: str,
    headers: dict[str, str],
    policy: HeaderPolicy,
) -> ReplayedResponse | None:
    """Replay on the calling thread with the shared default client."""
    return _default_client.replay(method, url, headers, policy)
