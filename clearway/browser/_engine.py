"""BrowserEngine: the facade request-fetching code talks to.

Every operation is queued on one ``SurfaceManager``, so evaluations,
clearance attempts and capture sessions from any number of threads
share a single browser page and run one at a time in arrival order.
"""

import functools
import logging
import re
from typing import Callable

from clearway._errors import ChallengeDetected, EngineUnavailable
from clearway._headers import HeaderPolicy
from clearway._request import (
    DEFAULT_INTERCEPT_TIMEOUT_MS,
    DEFAULT_MAX_REQUESTS,
    DEFAULT_SETTLE_MS,
    CaptureResult,
    InterceptedRequest,
    InterceptionConfig,
)
from clearway.browser._clearance import (
    DEFAULT_CLEARANCE_TIMEOUT_MS,
    ClearanceResult,
    ClearanceSolver,
)
from clearway.browser._evaluator import DEFAULT_EVALUATE_TIMEOUT_MS, ScriptEvaluator
from clearway.browser._interceptor import CaptureHandle, RequestInterceptor
from clearway.browser._manager import DEFAULT_IDLE_TIMEOUT, SurfaceManager
from clearway.browser._patchright import PatchrightSurface
from clearway.browser._surface import Surface

logger = logging.getLogger("clearway")

# Anything outside visible ASCII can't go on the wire in a header
_UNSAFE_HEADER_CHARS = re.compile(r"[^\x20-\x7e\t]")


def sanitize_header_value(value: str | None) -> str | None:
    """Strip characters not allowed in a header value; blank -> None."""
    if value is None:
        return None
    value = _UNSAFE_HEADER_CHARS.sub("", value).strip()
    return value or None


class BrowserEngine:
    """Shared headless browser for script evaluation, challenge
    clearance and request capture.

    Args:
        headless: Run Chrome without a window.
        idle_timeout: Seconds of inactivity before the browser is
            replaced on next use.
        js_timeout_ms: Default budget for ``evaluate_js()``.
        surface_factory: Builds the ``Surface``; defaults to a
            patchright-backed Chrome page.
    """

    def __init__(
        self,
        headless: bool = True,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        js_timeout_ms: int = DEFAULT_EVALUATE_TIMEOUT_MS,
        surface_factory: Callable[[], Surface] | None = None,
    ):
        if surface_factory is None:
            surface_factory = functools.partial(PatchrightSurface, headless=headless)
        self._js_timeout_ms = js_timeout_ms
        self._manager = SurfaceManager(surface_factory, idle_timeout)
        self._evaluator = ScriptEvaluator(self._manager)
        self._clearance = ClearanceSolver(self._manager)
        self._interceptor = RequestInterceptor(self._manager)
        self._supported: bool | None = None
        self._default_ua: str | None = None

    # ------------------------------------------------------------------
    # Engine state
    # ------------------------------------------------------------------

    def _detect_engine(self) -> None:
        if self._supported is not None:
            return
        try:
            ua = self._manager.run(
                lambda surface, cancelled: surface.default_user_agent,
                label="detect engine",
            )
        except EngineUnavailable as e:
            logger.warning("Browser engine unavailable: %s", e.reason)
            self._supported = False
            return
        self._supported = True
        self._default_ua = sanitize_header_value(ua)

    @property
    def supported(self) -> bool:
        """Whether a browser surface can be created in this runtime."""
        self._detect_engine()
        return bool(self._supported)

    @property
    def default_user_agent(self) -> str | None:
        """The browser's own user agent, or ``None`` when unsupported."""
        self._detect_engine()
        return self._default_ua

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def evaluate_js(
        self,
        base_url: str | None,
        script: str,
        timeout_ms: int | None = None,
        preserve_cookies: bool = False,
    ) -> str | None:
        """Load ``base_url`` and return ``script``'s JSON result, or None."""
        return self._evaluator.evaluate(
            base_url,
            script,
            timeout_ms if timeout_ms is not None else self._js_timeout_ms,
            preserve_cookies,
        )

    def clear(
        self,
        url: str,
        timeout_ms: int = DEFAULT_CLEARANCE_TIMEOUT_MS,
        user_agent: str | None = None,
        header_policy: HeaderPolicy | None = None,
    ) -> ClearanceResult:
        """Load a challenge page until its clearance cookie changes."""
        return self._clearance.solve(url, timeout_ms, user_agent, header_policy)

    def resolve_challenge(
        self,
        exc: ChallengeDetected,
        timeout_ms: int = DEFAULT_CLEARANCE_TIMEOUT_MS,
        header_policy: HeaderPolicy | None = None,
    ) -> ClearanceResult:
        """Clear the challenge a direct fetch ran into.

        The browser presents the same user agent the direct fetch used,
        so the resulting cookies stay valid for that client.
        """
        logger.info(
            "Resolving %s challenge at %s", exc.challenge_type, exc.url
        )
        return self.clear(
            exc.url,
            timeout_ms=timeout_ms,
            user_agent=exc.user_agent,
            header_policy=header_policy,
        )

    def intercept_requests(
        self,
        url: str,
        config: InterceptionConfig | None = None,
        accept: Callable[[InterceptedRequest], bool] | None = None,
        on_complete: Callable[[list[InterceptedRequest]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> CaptureResult:
        """Capture the requests ``url`` makes while loading; blocks."""
        return self._interceptor.intercept(url, config, accept, on_complete, on_error)

    def start_interception(
        self,
        url: str,
        config: InterceptionConfig | None = None,
        accept: Callable[[InterceptedRequest], bool] | None = None,
        on_complete: Callable[[list[InterceptedRequest]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> CaptureHandle:
        """Like ``intercept_requests()`` but returns a stoppable handle."""
        return self._interceptor.start(url, config, accept, on_complete, on_error)

    def intercept_with_script(
        self,
        url: str,
        script: str,
        timeout_ms: int = DEFAULT_INTERCEPT_TIMEOUT_MS,
        settle_ms: int | None = DEFAULT_SETTLE_MS,
    ) -> list[InterceptedRequest]:
        """Capture requests for which the JS predicate ``script`` is true."""
        config = InterceptionConfig(
            timeout_ms=timeout_ms,
            max_requests=DEFAULT_MAX_REQUESTS,
            filter_script=script,
            settle_ms=settle_ms,
        )
        return list(self._interceptor.intercept(url, config).requests)

    def capture_urls(
        self,
        page_url: str,
        url_pattern: "str | re.Pattern[str]",
        timeout_ms: int = DEFAULT_INTERCEPT_TIMEOUT_MS,
        settle_ms: int | None = DEFAULT_SETTLE_MS,
    ) -> list[str]:
        return self._interceptor.capture_urls(
            page_url, url_pattern, timeout_ms, settle_ms
        )

    def extract_vrf_token(
        self,
        page_url: str,
        timeout_ms: int = 15_000,
        settle_ms: int | None = DEFAULT_SETTLE_MS,
    ) -> str | None:
        return self._interceptor.extract_vrf_token(page_url, timeout_ms, settle_ms)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Shut down the browser and its worker thread."""
        self._manager.close()
        logger.debug("BrowserEngine closed")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
