"""Tests for the BrowserEngine facade."""

import time
from unittest.mock import patch

import pytest

from clearway._errors import ChallengeDetected, EngineUnavailable
from clearway._request import CompletionReason, InterceptionConfig
from clearway.browser._engine import BrowserEngine, sanitize_header_value
from tests.conftest import FakeSurface

URL = "https://example.com/title/1"


def make_engine(surface=None, **kwargs):
    surface = surface or FakeSurface()
    return BrowserEngine(surface_factory=lambda: surface, **kwargs), surface


class TestSanitizeHeaderValue:
    def test_strips_non_ascii_and_whitespace(self):
        assert sanitize_header_value("  Mozilla/5.0 é(X11)\n") == "Mozilla/5.0 (X11)"

    def test_blank_is_none(self):
        assert sanitize_header_value("    ") is None
        assert sanitize_header_value(None) is None


class TestEngineState:
    def test_supported_and_user_agent(self):
        engine, _ = make_engine()
        assert engine.supported is True
        assert engine.default_user_agent == FakeSurface.default_user_agent
        engine.close()

    def test_unsupported_runtime(self):
        def factory():
            raise EngineUnavailable("patchright is required")

        with BrowserEngine(surface_factory=factory) as engine:
            assert engine.supported is False
            assert engine.default_user_agent is None

    def test_operations_raise_when_unsupported(self):
        def factory():
            raise EngineUnavailable("patchright is required")

        with BrowserEngine(surface_factory=factory) as engine:
            with pytest.raises(EngineUnavailable):
                engine.evaluate_js(URL, "document.title")

    def test_missing_patchright(self):
        with patch.dict("sys.modules", {"patchright": None, "patchright.sync_api": None}):
            with BrowserEngine() as engine:
                assert engine.supported is False


class TestEngineOperations:
    def test_evaluate_js_uses_default_timeout(self):
        engine, surface = make_engine(
            FakeSurface(pages={URL: [("finished", URL)]}, evaluate_results=['"T"']),
            js_timeout_ms=1000,
        )
        assert engine.evaluate_js(URL, "document.title") == '"T"'
        engine.close()

    def test_resolve_challenge_uses_caller_user_agent(self):
        surface = FakeSurface(pages={URL: [
            ("cookie", "cf_clearance", "fresh"),
            ("started", URL),
        ]})
        engine, _ = make_engine(surface)
        exc = ChallengeDetected("cloudflare", URL, 403, user_agent="Client/9.0")
        result = engine.resolve_challenge(exc, timeout_ms=5000)
        assert result.cleared
        assert result.user_agent == "Client/9.0"
        assert ("set_user_agent", "Client/9.0") in surface.calls
        engine.close()

    def test_intercept_with_script(self):
        surface = FakeSurface(
            pages={URL: [
                ("request", "https://example.com/api/a"),
                ("request", "https://example.com/img/b.png"),
            ]},
            predicate=lambda script, payload: "/api/" in payload["url"],
        )
        engine, _ = make_engine(surface)
        requests = engine.intercept_with_script(URL, "(r) => r.url.includes('/api/')", timeout_ms=200)
        assert [r.url for r in requests] == ["https://example.com/api/a"]
        engine.close()

    def test_intercept_with_script_settles_after_load(self):
        surface = FakeSurface(pages={URL: [
            ("request", "https://example.com/api/a"),
            ("finished", URL),
        ]})
        engine, _ = make_engine(surface)
        start = time.monotonic()
        requests = engine.intercept_with_script(
            URL, "(r) => true", timeout_ms=10_000, settle_ms=50
        )
        assert time.monotonic() - start < 5
        assert [r.url for r in requests] == ["https://example.com/api/a"]
        engine.close()

    def test_start_interception_handle(self):
        engine, _ = make_engine()
        handle = engine.start_interception(URL, InterceptionConfig(timeout_ms=10_000))
        handle.stop()
        assert handle.result(5).reason is CompletionReason.MANUAL_STOP
        engine.close()

    def test_context_manager_closes_surface(self):
        surface = FakeSurface()
        with BrowserEngine(surface_factory=lambda: surface) as engine:
            engine.evaluate_js(None, "1")
        assert surface.closed
