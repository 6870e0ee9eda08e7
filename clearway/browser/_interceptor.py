"""Passive capture of the requests a page makes while it loads.

Some sources compute tokens client-side (a ``vrf`` query parameter on an
AJAX call, say) and never put them in the HTML. A capture session loads
the page on the shared surface and records every outgoing request that
passes, in order:

1. the ``max_requests`` cap
2. ``url_pattern`` (regex search on the URL)
3. ``filter_script`` (JS predicate, run outside the page)
4. the caller's ``accept`` predicate

The session ends exactly once, on whichever comes first: the cap, the
timeout, the settle delay after load, a manual ``stop()``, or
cancellation. A fault while testing one request is logged and kept in
``CaptureResult.faults``; capture carries on.
"""

import logging
import re
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable

from clearway._request import (
    DEFAULT_SETTLE_MS,
    CaptureResult,
    CompletionReason,
    InterceptedRequest,
    InterceptionConfig,
)
from clearway._errors import InterceptionFailed
from clearway._outcome import Outcome
from clearway.browser._manager import Operation, SurfaceManager
from clearway.browser._surface import PageObserver, Surface

logger = logging.getLogger("clearway")

# Slack on top of timeout_ms before a caller gives up on a wedged engine
GRACE_MS = 5_000

CAPTURE_URLS_MAX = 50
VRF_MAX = 10
VRF_PATTERN = re.compile(r"/ajax/read/.*[?&]vrf=([^&]+)")

_PUMP_STEP = 0.1


class CaptureSession:
    """Bookkeeping for one capture: accept checks and exactly-once finish.

    Engine independent; ``offer()`` may be called from engine callbacks
    and ``finish()`` from any thread.
    """

    def __init__(
        self,
        config: InterceptionConfig,
        accept: Callable[[InterceptedRequest], bool] | None = None,
        on_complete: Callable[[list[InterceptedRequest]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ):
        self.config = config
        self._accept = accept
        self._on_complete = on_complete
        self._on_error = on_error
        self._lock = threading.Lock()
        self._requests: list[InterceptedRequest] = []
        self._faults: list[BaseException] = []
        self._capturing = True
        self._full = False
        self.outcome = Outcome()
        # Set by the driving loop when a filter_script needs an engine
        self.script_runner: Callable[[str, dict], bool] | None = None

    @property
    def capturing(self) -> bool:
        return self._capturing

    @property
    def full(self) -> bool:
        """The cap was reached; the driving loop finishes the session."""
        return self._full

    @property
    def captured(self) -> list[InterceptedRequest]:
        with self._lock:
            return list(self._requests)

    def offer(self, request: InterceptedRequest) -> bool:
        """Test ``request`` and append it if every check accepts it."""
        if not self._capturing:
            return False
        config = self.config
        try:
            with self._lock:
                if len(self._requests) >= config.max_requests:
                    return False
            if config.url_pattern is not None and not request.url_matches(
                config.url_pattern
            ):
                return False
            if config.filter_script and not self._run_filter(request):
                return False
            if self._accept is not None and not self._accept(request):
                return False
        except Exception as e:
            self.fault(e)
            return False

        with self._lock:
            if not self._capturing or len(self._requests) >= config.max_requests:
                return False
            self._requests.append(request)
            if len(self._requests) >= config.max_requests:
                self._full = True
        logger.debug("Captured %s %s", request.method, request.url)
        if self._full:
            logger.debug(
                "Reached max_requests (%d), stopping capture", config.max_requests
            )
        return True

    def _run_filter(self, request: InterceptedRequest) -> bool:
        if self.script_runner is None:
            raise RuntimeError("filter_script set but no script runner bound")
        return bool(self.script_runner(self.config.filter_script, request.to_dict()))

    def fault(self, error: BaseException) -> None:
        """Record a non-fatal fault; capture continues."""
        logger.warning("Request capture fault: %s", error, exc_info=error)
        with self._lock:
            self._faults.append(error)

    def finish(
        self, reason: CompletionReason, error: BaseException | None = None
    ) -> bool:
        """End the session. Only the first call has any effect."""
        with self._lock:
            if not self._capturing:
                return False
            self._capturing = False
            requests = tuple(self._requests)
            faults = tuple(self._faults)

        result = CaptureResult(
            requests=requests, reason=reason, error=error, faults=faults
        )
        self.outcome.resolve(result, reason.value)
        logger.info(
            "Capture finished (%s) with %d requests", reason.value, len(requests)
        )
        if reason is CompletionReason.ERROR:
            if self._on_error is not None:
                self._on_error(error)
        elif self._on_complete is not None:
            self._on_complete(list(requests))
        return True


class _CaptureObserver(PageObserver):
    def __init__(self, session: CaptureSession):
        self._session = session
        self._finished = False

    def on_request(self, request: InterceptedRequest, navigation: bool) -> bool:
        # An accepted navigation counts as captured instead of being followed
        return self._session.offer(request)

    def on_load_finished(self, url: str) -> None:
        if url != "about:blank":
            self._finished = True

    def take_finished(self) -> bool:
        finished, self._finished = self._finished, False
        return finished


class CaptureHandle:
    """A running capture session: stop it early or wait for its result."""

    def __init__(self, operation: Operation, session: CaptureSession):
        self._operation = operation
        self.session = session

    def stop(self) -> bool:
        """Finish now with the requests captured so far."""
        return self.session.finish(CompletionReason.MANUAL_STOP)

    def cancel(self) -> None:
        self.session.finish(CompletionReason.MANUAL_STOP)
        self._operation.cancel()

    @property
    def captured(self) -> list[InterceptedRequest]:
        return self.session.captured

    def result(self, timeout: float | None = None) -> CaptureResult:
        """Wait for the session; on ``timeout`` finish it as timed out."""
        try:
            return self._operation.result(timeout)
        except FutureTimeout:
            self.session.finish(CompletionReason.TIMEOUT)
            self._operation.cancel()
            return self.session.outcome.value


class RequestInterceptor:
    """Runs capture sessions on the shared surface."""

    def __init__(self, manager: SurfaceManager, grace_ms: int = GRACE_MS):
        self._manager = manager
        self._grace_ms = grace_ms

    def start(
        self,
        url: str,
        config: InterceptionConfig | None = None,
        accept: Callable[[InterceptedRequest], bool] | None = None,
        on_complete: Callable[[list[InterceptedRequest]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> CaptureHandle:
        """Queue a capture session and return its handle immediately."""
        session = CaptureSession(
            config or InterceptionConfig(), accept, on_complete, on_error
        )
        operation = self._manager.submit(
            lambda surface, cancelled: self.run(surface, cancelled, url, session),
            label=f"intercept {url}",
        )
        return CaptureHandle(operation, session)

    def intercept(
        self,
        url: str,
        config: InterceptionConfig | None = None,
        accept: Callable[[InterceptedRequest], bool] | None = None,
        on_complete: Callable[[list[InterceptedRequest]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> CaptureResult:
        """Capture requests made while ``url`` loads; blocks until done.

        Waiting for the surface is unbounded; once the session starts it
        gets ``timeout_ms`` plus a grace margin before the caller stops
        waiting and takes what was captured.
        """
        handle = self.start(url, config, accept, on_complete, on_error)
        try:
            handle._operation.wait_started()
            limit = (handle.session.config.timeout_ms + self._grace_ms) / 1000
            return handle.result(limit)
        except BaseException:
            handle.cancel()
            raise

    def run(
        self,
        surface: Surface,
        cancelled: threading.Event,
        url: str,
        session: CaptureSession,
    ) -> CaptureResult:
        """Capture body; runs on the manager's worker thread."""
        config = session.config
        session.script_runner = surface.run_predicate
        observer = _CaptureObserver(session)
        surface.set_observer(observer)

        deadline = time.monotonic() + config.timeout_ms / 1000
        settle_at: float | None = None
        page_script_done = False

        logger.info(
            "Capturing requests from %s (timeout=%dms, max=%d)",
            url, config.timeout_ms, config.max_requests,
        )
        try:
            try:
                surface.navigate(url)
            except Exception as e:
                logger.warning("Navigation to %s failed: %s", url, e)
                session.finish(
                    CompletionReason.ERROR, InterceptionFailed(url, str(e))
                )

            while session.capturing:
                if cancelled.is_set():
                    session.finish(CompletionReason.MANUAL_STOP)
                    break
                surface.pump(max(0.0, min(_PUMP_STEP, deadline - time.monotonic())))

                if observer.take_finished():
                    if config.page_script and not page_script_done:
                        page_script_done = True
                        self._inject(surface, session, config.page_script)
                    if config.settle_ms is not None and settle_at is None:
                        settle_at = time.monotonic() + config.settle_ms / 1000

                now = time.monotonic()
                if session.full:
                    session.finish(CompletionReason.MAX_REACHED)
                elif now >= deadline:
                    session.finish(CompletionReason.TIMEOUT)
                elif settle_at is not None and now >= settle_at:
                    session.finish(CompletionReason.SETTLED)
        finally:
            surface.stop_loading()

        return session.outcome.value

    @staticmethod
    def _inject(surface: Surface, session: CaptureSession, script: str) -> None:
        logger.debug("Injecting page script")
        try:
            surface.evaluate(script)
        except Exception as e:
            session.fault(e)

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def capture_urls(
        self,
        page_url: str,
        url_pattern: "str | re.Pattern[str]",
        timeout_ms: int = 30_000,
        settle_ms: int | None = DEFAULT_SETTLE_MS,
    ) -> list[str]:
        """URLs of requests matching ``url_pattern`` while ``page_url`` loads."""
        config = InterceptionConfig(
            timeout_ms=timeout_ms,
            max_requests=CAPTURE_URLS_MAX,
            url_pattern=url_pattern,
            settle_ms=settle_ms,
        )
        result = self.intercept(
            page_url, config, lambda r: r.url_matches(config.url_pattern)
        )
        return result.urls

    def extract_vrf_token(
        self,
        page_url: str,
        timeout_ms: int = 15_000,
        settle_ms: int | None = DEFAULT_SETTLE_MS,
    ) -> str | None:
        """Decoded ``vrf`` parameter of the first ``/ajax/read/`` call."""
        config = InterceptionConfig(
            timeout_ms=timeout_ms,
            max_requests=VRF_MAX,
            url_pattern=VRF_PATTERN,
            settle_ms=settle_ms,
        )
        result = self.intercept(
            page_url,
            config,
            lambda r: "/ajax/read/" in r.url and "vrf=" in r.url,
        )
        if not result.requests:
            return None
        return result.requests[0].query_param("vrf")
