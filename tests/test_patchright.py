"""Tests for the patchright surface's route handling, against stub routes."""

import pytest

from clearway._replay import ReplayedResponse
from clearway._request import InterceptionConfig
from clearway.browser._evaluator import _EvaluateObserver
from clearway.browser._interceptor import CaptureSession, _CaptureObserver
from clearway.browser._patchright import PatchrightSurface
from clearway.browser._surface import PageObserver

URL = "https://example.com"
# Chrome reports the root path even when goto() was given none
NORMALIZED = "https://example.com/"


class StubFrame:
    def __init__(self, name="main"):
        self.name = name


class StubRequest:
    def __init__(self, url, frame, navigation=False, method="GET", post_data=None):
        self.url = url
        self.method = method
        self.post_data = post_data
        self.frame = frame
        self._navigation = navigation
        # .headers drops Cookie the way Playwright does
        self.headers = {"user-agent": "UA", "accept": "*/*"}

    def is_navigation_request(self):
        return self._navigation

    def all_headers(self):
        return {**self.headers, "cookie": "cf_clearance=abc"}


class StubRoute:
    def __init__(self, request):
        self.request = request
        self.actions = []
        self.fulfilled = None

    def continue_(self):
        self.actions.append("continue")

    def abort(self):
        self.actions.append("abort")

    def fulfill(self, **kwargs):
        self.actions.append("fulfill")
        self.fulfilled = kwargs


class StubPage:
    """Records goto() calls; ``on_goto`` stands in for the routed request."""

    def __init__(self):
        self.main_frame = StubFrame()
        self.extra_headers = None
        self.gotos = []
        self.on_goto = None

    def set_extra_http_headers(self, headers):
        self.extra_headers = headers

    def goto(self, url, wait_until=None):
        self.gotos.append((url, wait_until))
        if self.on_goto is not None:
            self.on_goto(url)


def make_surface(observer=None):
    surface = PatchrightSurface.__new__(PatchrightSurface)
    surface._reset_state()
    surface._page = StubPage()
    surface.set_observer(observer)
    return surface


def route_for(surface, url, navigation=False, frame=None, **kwargs):
    request = StubRequest(
        url, frame or surface._page.main_frame, navigation=navigation, **kwargs
    )
    route = StubRoute(request)
    surface._on_route(route)
    return route


def navigate_with(surface, url, routed_url):
    """navigate() whose main-frame request arrives as ``routed_url``."""
    routes = []
    surface._page.on_goto = lambda _: routes.append(
        route_for(surface, routed_url, navigation=True)
    )
    surface.navigate(url, headers={"Accept-Language": "en-US"})
    return routes[0]


def capture_observer(**config):
    session = CaptureSession(InterceptionConfig(**config))
    return _CaptureObserver(session), session


class BlockAll(PageObserver):
    def should_block_navigation(self, url):
        return True


class Explodes(PageObserver):
    def on_request(self, request, navigation):
        raise RuntimeError("observer failed")


class Replays(PageObserver):
    def __init__(self, response):
        self.response = response

    def replace_response(self, request):
        return self.response


# ---------------------------------------------------------------------------
# Initial navigation
# ---------------------------------------------------------------------------


class TestInitialNavigation:
    def test_normalized_url_is_not_treated_as_redirect(self):
        observer, session = capture_observer()
        surface = make_surface(observer)
        route = navigate_with(surface, URL, NORMALIZED)
        assert route.actions == ["continue"]
        assert session.captured[0].url == NORMALIZED
        assert surface._page.gotos == [(URL, "commit")]
        assert surface._page.extra_headers == {"Accept-Language": "en-US"}

    def test_blocking_observer_lets_initial_request_through(self):
        surface = make_surface(_EvaluateObserver("other.test"))
        route = navigate_with(surface, URL, NORMALIZED)
        assert route.actions == ["continue"]

    def test_only_first_main_frame_request_is_initial(self):
        surface = make_surface(BlockAll())
        routes = []

        def on_goto(_):
            routes.append(route_for(surface, NORMALIZED, navigation=True))
            routes.append(route_for(surface, "https://elsewhere.test/", navigation=True))

        surface._page.on_goto = on_goto
        surface.navigate(URL)
        assert [r.actions for r in routes] == [["continue"], ["abort"]]

    def test_subframe_navigation_does_not_consume_initial(self):
        surface = make_surface(BlockAll())
        routes = []

        def on_goto(_):
            routes.append(route_for(
                surface, "https://ads.test/frame", navigation=True,
                frame=StubFrame("ad"),
            ))
            routes.append(route_for(surface, NORMALIZED, navigation=True))

        surface._page.on_goto = on_goto
        surface.navigate(URL)
        assert [r.actions for r in routes] == [["continue"], ["continue"]]

    def test_flag_cleared_when_goto_fails(self):
        surface = make_surface(BlockAll())

        def fail(_):
            raise TimeoutError("goto timed out")

        surface._page.on_goto = fail
        with pytest.raises(TimeoutError):
            surface.navigate(URL)
        surface._page.on_goto = None
        route = route_for(surface, NORMALIZED, navigation=True)
        assert route.actions == ["abort"]


# ---------------------------------------------------------------------------
# load_html
# ---------------------------------------------------------------------------


class TestLoadHtml:
    def test_document_fulfilled_at_normalized_url(self):
        surface = make_surface(_EvaluateObserver("example.com"))
        routes = []
        surface._page.on_goto = lambda _: routes.append(
            route_for(surface, NORMALIZED, navigation=True)
        )
        surface.load_html(URL, " ")
        assert routes[0].actions == ["fulfill"]
        assert routes[0].fulfilled == {
            "status": 200, "content_type": "text/html", "body": " ",
        }

    def test_pending_document_served_once(self):
        surface = make_surface()
        surface._page.on_goto = lambda _: route_for(surface, NORMALIZED, navigation=True)
        surface.load_html(URL, "<p>x</p>")
        surface._page.on_goto = None
        route = route_for(surface, NORMALIZED, navigation=True)
        assert route.actions == ["continue"]


# ---------------------------------------------------------------------------
# Later requests
# ---------------------------------------------------------------------------


class TestRouting:
    def test_no_observer_continues(self):
        surface = make_surface()
        assert route_for(surface, "https://example.com/app.js").actions == ["continue"]

    def test_blocked_navigation_aborted(self):
        surface = make_surface(_EvaluateObserver("example.com"))
        route = route_for(surface, "https://ads.tracker.test/landing", navigation=True)
        assert route.actions == ["abort"]

    def test_same_host_navigation_followed(self):
        surface = make_surface(_EvaluateObserver("example.com"))
        route = route_for(surface, "https://example.com/next", navigation=True)
        assert route.actions == ["continue"]

    def test_captured_navigation_aborted(self):
        observer, session = capture_observer()
        surface = make_surface(observer)
        route = route_for(surface, "https://example.com/redirect", navigation=True)
        assert route.actions == ["abort"]
        assert session.captured[0].url == "https://example.com/redirect"

    def test_captured_subresource_continues(self):
        observer, session = capture_observer()
        surface = make_surface(observer)
        route = route_for(
            surface, "https://example.com/api", method="POST", post_data='{"a":1}'
        )
        assert route.actions == ["continue"]
        captured = session.captured[0]
        assert captured.method == "POST"
        assert captured.body == '{"a":1}'

    def test_captured_headers_include_cookie(self):
        observer, session = capture_observer()
        surface = make_surface(observer)
        route_for(surface, "https://example.com/api")
        headers = session.captured[0].headers
        assert headers["cookie"] == "cf_clearance=abc"
        assert headers["user-agent"] == "UA"

    def test_replayed_response_fulfilled(self):
        response = ReplayedResponse(
            url="https://example.com/app.js",
            status=200,
            mime_type="text/javascript",
            charset="UTF-8",
            headers={
                "Content-Encoding": "br",
                "Content-Length": "10",
                "Transfer-Encoding": "chunked",
                "X-Cache": "HIT",
            },
            body=b"var a = 1;",
        )
        surface = make_surface(Replays(response))
        route = route_for(surface, "https://example.com/app.js")
        assert route.actions == ["fulfill"]
        assert route.fulfilled == {
            "status": 200,
            "headers": {
                "X-Cache": "HIT",
                "content-type": "text/javascript; charset=UTF-8",
            },
            "body": b"var a = 1;",
        }

    def test_observer_failure_still_continues(self):
        surface = make_surface(Explodes())
        route = route_for(surface, "https://example.com/app.js")
        assert route.actions == ["continue"]
