"""Engine-neutral browser surface and page lifecycle hooks.

A ``Surface`` is the single browser page clearway drives. It is not
thread-safe: only the manager's worker thread touches it. Engine events
(navigation start, request, load finished) are delivered to the
installed ``PageObserver`` while the driving code is inside ``pump()``.

Observer hooks run inside the engine's event dispatch. They may record
state and make per-request decisions, but anything that drives the page
(evaluating script, reading cookies) belongs to the component loop
between ``pump()`` calls.
"""

from clearway._request import InterceptedRequest


class PageObserver:
    """Receives page lifecycle events. All hooks default to no-ops."""

    def on_navigation_started(self, url: str) -> None:
        """The main frame committed a new document at ``url``."""

    def on_load_finished(self, url: str) -> None:
        """The main frame fired its load event."""

    def on_request(
        self, request: InterceptedRequest, navigation: bool
    ) -> bool:
        """Observe an outgoing request before it proceeds.

        ``navigation`` is True for main-frame navigations other than the
        one started by ``Surface.navigate()``. Returning True for such a
        navigation cancels it; the return value is ignored otherwise.
        """
        return False

    def should_block_navigation(self, url: str) -> bool:
        """Return True to stop a main-frame navigation to ``url``."""
        return False

    def replace_response(self, request: InterceptedRequest):
        """Return a ``ReplayedResponse`` to serve instead of the network."""
        return None


class Surface:
    """Interface every browser engine adapter implements."""

    default_user_agent: str | None = None

    def navigate(self, url: str, headers: dict[str, str] | None = None) -> None:
        raise NotImplementedError

    def load_html(self, base_url: str, html: str) -> None:
        """Show ``html`` as the document at ``base_url`` without fetching it."""
        raise NotImplementedError

    def evaluate(self, script: str) -> str | None:
        """Evaluate ``script`` in the page, returning its JSON text.

        A JavaScript ``null``/``undefined`` result comes back as the
        string ``"null"``.
        """
        raise NotImplementedError

    def run_predicate(self, script: str, payload: dict) -> bool:
        """Call a JS function with ``payload`` outside the page's context."""
        raise NotImplementedError

    def pump(self, seconds: float) -> None:
        """Process engine events for up to ``seconds``."""
        raise NotImplementedError

    def stop_loading(self) -> None:
        raise NotImplementedError

    def set_observer(self, observer: PageObserver | None) -> None:
        raise NotImplementedError

    def set_user_agent(self, user_agent: str | None) -> None:
        """Override the user agent; ``None`` restores the default."""
        raise NotImplementedError

    def get_cookie(self, url: str, name: str) -> str | None:
        raise NotImplementedError

    def cookies(self) -> list[dict]:
        raise NotImplementedError

    def blank(self) -> None:
        """Navigate to an empty document."""
        raise NotImplementedError

    def clear_history(self) -> None:
        raise NotImplementedError

    def is_alive(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError
