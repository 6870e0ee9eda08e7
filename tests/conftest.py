"""Shared fakes for clearway tests: a scripted Surface and mock rnet types."""

import json
import time
from collections import deque

from clearway._request import InterceptedRequest
from clearway.browser._manager import SurfaceManager
from clearway.browser._surface import PageObserver, Surface

# ---------------------------------------------------------------------------
# Mock rnet types
# ---------------------------------------------------------------------------


class MockStatus:
    def __init__(self, code: int):
        self._code = code

    def as_int(self) -> int:
        return self._code


class MockHeaderMap:
    """Mock rnet HeaderMap with bytes keys and bytes values.

    Accepts a dict or a list of (name, value) pairs; the list form
    allows repeated headers.
    """

    def __init__(self, data=None):
        self._raw: dict[bytes, list[bytes]] = {}
        items = data.items() if isinstance(data, dict) else (data or [])
        for k, v in items:
            bk = k.lower().encode("ascii")
            self._raw.setdefault(bk, []).append(v.encode("utf-8"))

    def keys(self):
        return list(self._raw.keys())

    def get_all(self, key):
        if isinstance(key, str):
            key = key.lower().encode("ascii")
        return list(self._raw.get(key, []))


class MockResponse:
    def __init__(self, status_code: int, headers=None, body: str = ""):
        self.status = MockStatus(status_code)
        self.headers = MockHeaderMap(headers)
        self._body = body

    def bytes(self):
        return self._body.encode("utf-8")


class MockClient:
    """Mock rnet client that returns responses from a sequence."""

    def __init__(self, responses: list):
        self._responses = responses
        self._index = 0
        self.request_count = 0
        self.last_kwargs: dict = {}
        self.request_log: list[tuple] = []

    def request(self, method, url, **kwargs):
        self.last_kwargs = kwargs
        resp = self._responses[min(self._index, len(self._responses) - 1)]
        self._index += 1
        self.request_count += 1
        self.request_log.append((method, url, kwargs))
        if isinstance(resp, Exception):
            raise resp
        return resp


# ---------------------------------------------------------------------------
# Scripted browser surface
# ---------------------------------------------------------------------------


def make_request(url: str, method: str = "GET", headers=None) -> InterceptedRequest:
    return InterceptedRequest(
        url=url, method=method, headers=headers or {}, timestamp=time.time()
    )


class FakeSurface(Surface):
    """Surface that replays scripted page events, one per ``pump()``.

    ``pages`` maps a URL to the events its navigation produces:

    - ``("started", url)``: main-frame navigation start
    - ``("finished", url)``: load event
    - ``("request", url)`` / ``("navigation", url)``: subresource request
      or main-frame navigation request
    - ``("cookie", name, value)``: the page sets a cookie
    - ``("idle",)``: nothing happens during this pump

    ``evaluate_results`` is consumed in order (the last entry repeats);
    Exception entries are raised.
    """

    default_user_agent = "Mozilla/5.0 (X11; Linux x86_64) FakeChrome/130.0"

    def __init__(self, pages=None, evaluate_results=None, predicate=None):
        self.pages: dict[str, list[tuple]] = pages or {}
        self.evaluate_results = list(evaluate_results or ["null"])
        self.predicate = predicate
        self.observer: PageObserver | None = None
        self.cookie_values: dict[str, str] = {}
        self.user_agent: str | None = None
        self.calls: list[tuple] = []
        self.aborted: list[str] = []
        self.fulfilled: list = []
        self.navigate_error: Exception | None = None
        self.alive = True
        self.closed = False
        self._events: deque = deque()

    # Surface ---------------------------------------------------------

    def navigate(self, url, headers=None):
        self.calls.append(("navigate", url, headers))
        if self.navigate_error is not None:
            raise self.navigate_error
        self._events.extend(self.pages.get(url, []))

    def load_html(self, base_url, html):
        self.calls.append(("load_html", base_url, html))
        self._events.extend(
            self.pages.get(base_url, [("started", base_url), ("finished", base_url)])
        )

    def evaluate(self, script):
        self.calls.append(("evaluate", script))
        if len(self.evaluate_results) > 1:
            result = self.evaluate_results.pop(0)
        else:
            result = self.evaluate_results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def run_predicate(self, script, payload):
        self.calls.append(("run_predicate", script, payload))
        if self.predicate is None:
            return True
        return self.predicate(script, payload)

    def pump(self, seconds):
        if not self._events:
            time.sleep(seconds)
            return
        self._dispatch(self._events.popleft())

    def stop_loading(self):
        self.calls.append(("stop_loading",))

    def set_observer(self, observer):
        self.calls.append(("set_observer", observer))
        self.observer = observer

    def set_user_agent(self, user_agent):
        self.calls.append(("set_user_agent", user_agent))
        self.user_agent = user_agent

    def get_cookie(self, url, name):
        return self.cookie_values.get(name)

    def cookies(self):
        return [
            {"name": k, "value": v, "domain": "example.com", "path": "/"}
            for k, v in self.cookie_values.items()
        ]

    def blank(self):
        self.calls.append(("blank",))
        self._events.clear()

    def clear_history(self):
        self.calls.append(("clear_history",))

    def is_alive(self):
        return self.alive and not self.closed

    def close(self):
        self.calls.append(("close",))
        self.closed = True

    # Helpers ---------------------------------------------------------

    def _dispatch(self, event):
        kind = event[0]
        observer = self.observer or PageObserver()
        if kind == "started":
            observer.on_navigation_started(event[1])
        elif kind == "finished":
            observer.on_load_finished(event[1])
        elif kind == "cookie":
            self.cookie_values[event[1]] = event[2]
        elif kind in ("request", "navigation"):
            navigation = kind == "navigation"
            url = event[1]
            if navigation and observer.should_block_navigation(url):
                self.aborted.append(url)
                return
            request = make_request(url)
            if observer.on_request(request, navigation) and navigation:
                self.aborted.append(url)
                return
            replayed = observer.replace_response(request)
            if replayed is not None:
                self.fulfilled.append(replayed)

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


def json_text(value) -> str:
    return json.dumps(value)


def make_manager(surface: FakeSurface | None = None, **kwargs):
    """SurfaceManager over a FakeSurface; returns ``(manager, surface)``."""
    surface = surface or FakeSurface()
    return SurfaceManager(lambda: surface, **kwargs), surface
