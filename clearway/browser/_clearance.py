"""Challenge clearance: detect success by a changed clearance cookie.

A JS challenge page has no "solved" event. It reloads or redirects once
the browser passes, and by then the origin has set a fresh clearance
cookie. So the detector reads the cookie on every navigation start and
compares it with the value seen when the session began:

    LOADING -> CHECKING -> CLEARED        (cookie changed, not None)
                        -> LOOP_DETECTED  (3 starts without a change)

A loop is reported, not raised: the caller decides whether to abort.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass
from email.utils import formatdate
from typing import Callable

from clearway._challenge import CLEARANCE_COOKIE
from clearway._headers import HeaderPolicy
from clearway._outcome import Outcome
from clearway._replay import submit_replay
from clearway._request import InterceptedRequest
from clearway.browser._manager import SurfaceManager
from clearway.browser._surface import PageObserver, Surface

logger = logging.getLogger("clearway")

LOOP_THRESHOLD = 3
DEFAULT_CLEARANCE_TIMEOUT_MS = 30_000

_PUMP_STEP = 0.1


class ClearanceState(enum.Enum):
    LOADING = "loading"
    CHECKING = "checking"
    CLEARED = "cleared"
    LOOP_DETECTED = "loop_detected"


class ClearanceDetector:
    """Tracks the clearance cookie across navigation starts.

    Args:
        read_cookie: Returns the current clearance cookie value (or
            None). Called once at construction for the baseline and
            again on every ``check()``.
        on_cleared: Called once, the first time the cookie changes.
        on_loop: Called each time ``threshold`` unchanged checks pile up.
        threshold: Unchanged checks that count as a challenge loop.
    """

    def __init__(
        self,
        read_cookie: Callable[[], str | None],
        on_cleared: Callable[[], None] | None = None,
        on_loop: Callable[[], None] | None = None,
        threshold: int = LOOP_THRESHOLD,
    ):
        self._read_cookie = read_cookie
        self._on_cleared = on_cleared
        self._on_loop = on_loop
        self._threshold = threshold
        self.baseline = read_cookie()
        self.counter = 0
        self.state = ClearanceState.LOADING

    def check(self) -> ClearanceState:
        """Re-read the cookie on a navigation start and advance the state."""
        if self.state is ClearanceState.CLEARED:
            return self.state

        value = self._read_cookie()
        if value is not None and value != self.baseline:
            self.state = ClearanceState.CLEARED
            logger.debug("Clearance cookie changed after %d checks", self.counter)
            if self._on_cleared is not None:
                self._on_cleared()
            return self.state

        self.counter += 1
        if self.counter >= self._threshold:
            self.reset()
            self.state = ClearanceState.LOOP_DETECTED
            logger.warning(
                "Challenge loop detected: %d navigations without clearance",
                self._threshold,
            )
            if self._on_loop is not None:
                self._on_loop()
        else:
            self.state = ClearanceState.CHECKING
        return self.state

    def reset(self) -> None:
        """Zero the loop counter; the baseline cookie is kept."""
        self.counter = 0


def format_cookie_str(cookie: dict) -> str:
    """Convert a browser cookie dict to a Set-Cookie header string.

    Input format (patchright/Playwright context.cookies()):
        {"name": str, "value": str, "domain": str, "path": str,
         "expires": float, "httpOnly": bool, "secure": bool,
         "sameSite": str}
    """
    parts = [f"{cookie['name']}={cookie['value']}"]
    for attr, key in (("Domain", "domain"), ("Path", "path")):
        if cookie.get(key):
            parts.append(f"{attr}={cookie[key]}")
    expires = cookie.get("expires", -1)
    if isinstance(expires, (int, float)) and expires > 0:
        parts.append(f"Expires={formatdate(expires, usegmt=True)}")
    if cookie.get("secure"):
        parts.append("Secure")
    if cookie.get("httpOnly"):
        parts.append("HttpOnly")
    if cookie.get("sameSite"):
        parts.append(f"SameSite={cookie['sameSite']}")
    return "; ".join(parts)


@dataclass
class ClearanceResult:
    """Result of one clearance attempt."""

    url: str
    state: ClearanceState
    cookies: list[dict]
    user_agent: str

    @property
    def cleared(self) -> bool:
        return self.state is ClearanceState.CLEARED

    @property
    def loop_detected(self) -> bool:
        return self.state is ClearanceState.LOOP_DETECTED

    def set_cookie_headers(self) -> list[str]:
        """Cookies as Set-Cookie strings, ready for an HTTP client jar."""
        return [format_cookie_str(c) for c in self.cookies]


class _ClearanceObserver(PageObserver):
    """Counts navigation starts and optionally replays requests."""

    def __init__(self, header_policy: HeaderPolicy | None):
        self._header_policy = header_policy
        self._lock = threading.Lock()
        self._starts = 0

    def on_navigation_started(self, url: str) -> None:
        if url == "about:blank":
            return
        with self._lock:
            self._starts += 1

    def take_starts(self) -> int:
        with self._lock:
            starts, self._starts = self._starts, 0
        return starts

    def replace_response(self, request: InterceptedRequest):
        if self._header_policy is None:
            return None
        future = submit_replay(
            request.method, request.url, dict(request.headers), self._header_policy
        )
        return future.result()


class ClearanceSolver:
    """Loads a challenge page on the shared surface until it clears.

    ``header_policy`` selects the header-interception variant: every
    non-POST request is replayed out-of-band with headers rewritten by
    that policy, and the replayed response is served to the page.
    """

    def __init__(
        self,
        manager: SurfaceManager,
        cookie_name: str = CLEARANCE_COOKIE,
        threshold: int = LOOP_THRESHOLD,
    ):
        self._manager = manager
        self._cookie_name = cookie_name
        self._threshold = threshold

    def solve(
        self,
        url: str,
        timeout_ms: int = DEFAULT_CLEARANCE_TIMEOUT_MS,
        user_agent: str | None = None,
        header_policy: HeaderPolicy | None = None,
    ) -> ClearanceResult:
        return self._manager.run(
            lambda surface, cancelled: self.run(
                surface, cancelled, url, timeout_ms, user_agent, header_policy
            ),
            label=f"clearance {url}",
        )

    def run(
        self,
        surface: Surface,
        cancelled: threading.Event,
        url: str,
        timeout_ms: int = DEFAULT_CLEARANCE_TIMEOUT_MS,
        user_agent: str | None = None,
        header_policy: HeaderPolicy | None = None,
    ) -> ClearanceResult:
        """Clearance body; runs on the manager's worker thread."""
        if user_agent:
            surface.set_user_agent(user_agent)

        outcome = Outcome()
        detector = ClearanceDetector(
            lambda: surface.get_cookie(url, self._cookie_name),
            on_cleared=lambda: outcome.resolve(ClearanceState.CLEARED, "cookie"),
            on_loop=lambda: outcome.resolve(ClearanceState.LOOP_DETECTED, "loop"),
            threshold=self._threshold,
        )
        observer = _ClearanceObserver(header_policy)
        surface.set_observer(observer)

        logger.info(
            "Clearing challenge at %s (policy=%s)",
            url, header_policy.value if header_policy else "none",
        )
        deadline = time.monotonic() + timeout_ms / 1000
        try:
            surface.navigate(url)
            while not outcome.done:
                if cancelled.is_set():
                    outcome.resolve(detector.state, "cancelled")
                    break
                surface.pump(max(0.0, min(_PUMP_STEP, deadline - time.monotonic())))
                for _ in range(observer.take_starts()):
                    detector.check()
                    if outcome.done:
                        break
                if not outcome.done and time.monotonic() >= deadline:
                    outcome.resolve(detector.state, "deadline")
                    logger.warning(
                        "Challenge at %s not cleared within %dms", url, timeout_ms
                    )
        finally:
            surface.stop_loading()

        state = outcome.value
        if state is ClearanceState.CLEARED:
            logger.info("Challenge cleared at %s", url)
        return ClearanceResult(
            url=url,
            state=state,
            cookies=surface.cookies(),
            user_agent=user_agent or surface.default_user_agent or "",
        )
