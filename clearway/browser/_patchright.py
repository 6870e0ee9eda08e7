"""Surface implementation backed by patchright (undetected Playwright).

Uses system Chrome via ``channel="chrome"``. patchright's sync API is
greenlet based: route handlers and page events are dispatched while the
calling thread is inside a patchright call, which is what ``pump()``
(``page.wait_for_timeout``) provides.
"""

import json
import logging
import random
import time

from clearway._errors import EngineUnavailable
from clearway._request import InterceptedRequest
from clearway.browser._surface import PageObserver, Surface

logger = logging.getLogger("clearway")

_VIEWPORTS = [
    (1920, 1080),
    (1536, 864),
    (1440, 900),
    (1366, 768),
    (1280, 720),
]

# Headers rnet decompresses/recomputes; forwarding them garbles the body
_HOP_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


class PatchrightSurface(Surface):
    """One Chrome page in its own browser context.

    Args:
        headless: Run Chrome without a window.
    """

    def __init__(self, headless: bool = True):
        try:
            from patchright.sync_api import sync_playwright
        except ImportError:
            raise EngineUnavailable(
                "patchright is required for browser operations. "
                "Install with: pip install clearway[browser]"
            ) from None

        self._reset_state()

        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(
                channel="chrome",
                headless=headless,
                args=["--disable-blink-features=AutomationControlled"],
            )
            viewport = random.choice(_VIEWPORTS)
            self._context = self._browser.new_context(
                viewport={"width": viewport[0], "height": viewport[1]},
            )
            self._page = self._context.new_page()
            self._cdp = self._context.new_cdp_session(self._page)
            self.default_user_agent = self._page.evaluate("navigator.userAgent")
        except Exception:
            self.close()
            raise

        self._page.on("framenavigated", self._on_frame_navigated)
        self._page.on("load", self._on_load)
        self._page.route("**/*", self._on_route)
        logger.info("Browser launched (headless=%s)", headless)

    def _reset_state(self) -> None:
        self._observer: PageObserver | None = None
        # Set while goto() waits for the main-frame request it issues
        self._expect_initial = False
        self._pending_html: str | None = None
        self._scratch = None

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def _on_frame_navigated(self, frame) -> None:
        if frame != self._page.main_frame or self._observer is None:
            return
        self._observer.on_navigation_started(frame.url)

    def _on_load(self, page) -> None:
        if self._observer is not None:
            self._observer.on_load_finished(page.url)

    def _is_main_frame_navigation(self, request) -> bool:
        if not request.is_navigation_request():
            return False
        try:
            return request.frame == self._page.main_frame
        except Exception:
            # Service worker requests have no frame
            return False

    def _on_route(self, route) -> None:
        try:
            self._handle_route(route)
        except Exception:
            logger.warning(
                "Route handler failed for %s", route.request.url, exc_info=True
            )
            try:
                route.continue_()
            except Exception:
                logger.debug("Route already handled", exc_info=True)

    def _handle_route(self, route) -> None:
        request = route.request
        url = request.url

        # The first main-frame request after goto() is the one we started,
        # whatever form Chrome normalized its URL to
        navigation = False
        if self._is_main_frame_navigation(request):
            if self._expect_initial:
                self._expect_initial = False
                if self._pending_html is not None:
                    html, self._pending_html = self._pending_html, None
                    route.fulfill(status=200, content_type="text/html", body=html)
                    return
            else:
                navigation = True

        observer = self._observer
        if observer is None:
            route.continue_()
            return

        if navigation and observer.should_block_navigation(url):
            route.abort()
            return

        # .headers omits security headers (Cookie among them)
        intercepted = InterceptedRequest(
            url=url,
            method=request.method,
            headers=request.all_headers(),
            timestamp=time.time(),
            body=request.post_data,
        )
        if observer.on_request(intercepted, navigation) and navigation:
            route.abort()
            return

        replayed = observer.replace_response(intercepted)
        if replayed is None:
            route.continue_()
            return
        headers = {
            k: v for k, v in replayed.headers.items()
            if k.lower() not in _HOP_HEADERS
        }
        headers["content-type"] = f"{replayed.mime_type}; charset={replayed.charset}"
        route.fulfill(status=replayed.status, headers=headers, body=replayed.body)

    # ------------------------------------------------------------------
    # Surface
    # ------------------------------------------------------------------

    def _goto(self, url: str) -> None:
        self._expect_initial = True
        try:
            self._page.goto(url, wait_until="commit")
        finally:
            self._expect_initial = False
            self._pending_html = None

    def navigate(self, url: str, headers: dict[str, str] | None = None) -> None:
        self._page.set_extra_http_headers(headers or {})
        self._goto(url)

    def load_html(self, base_url: str, html: str) -> None:
        self._pending_html = html
        self._goto(base_url)

    def evaluate(self, script: str) -> str | None:
        return json.dumps(self._page.evaluate(script), default=str)

    def run_predicate(self, script: str, payload: dict) -> bool:
        if self._scratch is None or self._scratch.is_closed():
            self._scratch = self._context.new_page()
        return bool(self._scratch.evaluate(script, payload))

    def pump(self, seconds: float) -> None:
        self._page.wait_for_timeout(max(1, int(seconds * 1000)))

    def stop_loading(self) -> None:
        self._cdp.send("Page.stopLoading")

    def set_observer(self, observer: PageObserver | None) -> None:
        self._observer = observer

    def set_user_agent(self, user_agent: str | None) -> None:
        self._cdp.send(
            "Network.setUserAgentOverride",
            {"userAgent": user_agent or self.default_user_agent},
        )

    def get_cookie(self, url: str, name: str) -> str | None:
        for cookie in self._context.cookies(url):
            if cookie.get("name") == name:
                return cookie.get("value")
        return None

    def cookies(self) -> list[dict]:
        return [dict(c) for c in self._context.cookies()]

    def blank(self) -> None:
        self._page.goto("about:blank")

    def clear_history(self) -> None:
        self._cdp.send("Page.resetNavigationHistory")

    def is_alive(self) -> bool:
        try:
            return self._browser.is_connected() and not self._page.is_closed()
        except Exception:
            return False

    def close(self) -> None:
        """Shut down browser and playwright."""
        browser = getattr(self, "_browser", None)
        if browser is not None:
            try:
                browser.close()
            except Exception:
                logger.debug("Error closing browser", exc_info=True)
            self._browser = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception:
                logger.debug("Error stopping playwright", exc_info=True)
            self._playwright = None
