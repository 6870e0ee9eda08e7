"""Page-context JavaScript evaluation with a completion race.

After navigating, three sources compete to produce the result:

- the page's load event (evaluate once the document finished loading)
- a poll every ``poll_interval`` seconds (content rendered late by
  async scripts)
- the overall deadline (resolves to ``None``)

The first non-blank, non-``null`` result, or the deadline, wins; the
loop stops as soon as the shared ``Outcome`` resolves, so no poll or
load callback can act on the page after that.
"""

import logging
import threading
import time
from urllib.parse import urlparse

from clearway._headers import DEFAULT_ACCEPT_LANGUAGE
from clearway._outcome import Outcome
from clearway.browser._manager import SurfaceManager
from clearway.browser._surface import PageObserver, Surface

logger = logging.getLogger("clearway")

DEFAULT_EVALUATE_TIMEOUT_MS = 15_000
POLL_INTERVAL = 1.0

# Upper bound on one engine pump, so cancellation is noticed promptly
_PUMP_STEP = 0.1


def _unwrap(result: str | None) -> str | None:
    if result is None or result == "null" or not result.strip():
        return None
    return result


class _EvaluateObserver(PageObserver):
    """Blocks off-host redirects and flags finished loads."""

    def __init__(self, host: str | None):
        self._host = host
        self._finished = False

    def should_block_navigation(self, url: str) -> bool:
        target = urlparse(url).hostname
        if self._host and target and self._host in target:
            return False
        logger.debug("Blocked redirect to external domain: %s", url)
        return True

    def on_load_finished(self, url: str) -> None:
        if url != "about:blank":
            self._finished = True

    def take_finished(self) -> bool:
        finished, self._finished = self._finished, False
        return finished


class ScriptEvaluator:
    """Runs JavaScript against pages loaded on the shared surface."""

    def __init__(
        self,
        manager: SurfaceManager,
        poll_interval: float = POLL_INTERVAL,
    ):
        self._manager = manager
        self._poll_interval = poll_interval

    def evaluate(
        self,
        base_url: str | None,
        script: str,
        timeout_ms: int = DEFAULT_EVALUATE_TIMEOUT_MS,
        preserve_cookies: bool = False,
    ) -> str | None:
        """Evaluate ``script`` and return its JSON text, or ``None``.

        Args:
            base_url: Page to load first. Empty or ``None`` evaluates
                against whatever document the surface currently shows.
            script: JavaScript expression (or function) to evaluate.
            timeout_ms: Overall budget; reaching it yields ``None``.
            preserve_cookies: Show an empty document at ``base_url``
                instead of fetching it, so the page's own response can't
                overwrite session cookies.
        """
        return self._manager.run(
            lambda surface, cancelled: self.run(
                surface, cancelled, base_url, script,
                timeout_ms, preserve_cookies,
            ),
            label=f"evaluate {base_url or '<current>'}",
        )

    def run(
        self,
        surface: Surface,
        cancelled: threading.Event,
        base_url: str | None,
        script: str,
        timeout_ms: int = DEFAULT_EVALUATE_TIMEOUT_MS,
        preserve_cookies: bool = False,
    ) -> str | None:
        """Evaluation body; runs on the manager's worker thread."""
        if not base_url:
            return _unwrap(surface.evaluate(script))

        outcome = Outcome()
        observer = _EvaluateObserver(urlparse(base_url).hostname)
        surface.set_observer(observer)
        try:
            try:
                if preserve_cookies:
                    surface.load_html(base_url, " ")
                else:
                    surface.navigate(
                        base_url, headers={"Accept-Language": DEFAULT_ACCEPT_LANGUAGE}
                    )
            except Exception as e:
                # Polling may still hit whatever did load; otherwise None at timeout
                logger.debug("Navigation to %s failed: %s", base_url, e)

            start = time.monotonic()
            deadline = start + timeout_ms / 1000
            next_poll = start + self._poll_interval

            while not outcome.done:
                if cancelled.is_set():
                    outcome.resolve(None, "cancelled")
                    break
                now = time.monotonic()
                surface.pump(
                    max(0.0, min(_PUMP_STEP, next_poll - now, deadline - now))
                )

                if observer.take_finished():
                    self._attempt(surface, script, outcome, "page finished")

                now = time.monotonic()
                if not outcome.done and now >= next_poll:
                    self._attempt(surface, script, outcome, "poll")
                    next_poll = now + self._poll_interval

                if not outcome.done and time.monotonic() >= deadline:
                    if outcome.resolve(None, "deadline"):
                        logger.warning(
                            "Script evaluation on %s timed out after %dms",
                            base_url, timeout_ms,
                        )
        finally:
            surface.stop_loading()

        if outcome.value is not None:
            logger.debug("Script result for %s found via %s", base_url, outcome.source)
        return outcome.value

    @staticmethod
    def _attempt(
        surface: Surface, script: str, outcome: Outcome, source: str
    ) -> None:
        try:
            result = _unwrap(surface.evaluate(script))
        except Exception:
            # The document is usually mid-navigation; the next poll retries
            logger.debug("Evaluation via %s failed", source, exc_info=True)
            return
        if result is not None:
            outcome.resolve(result, source)
