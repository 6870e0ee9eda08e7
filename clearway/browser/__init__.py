"""Browser engine operations via patchright (patched Playwright)."""

from clearway.browser._clearance import (
    ClearanceDetector,
    ClearanceResult,
    ClearanceSolver,
    ClearanceState,
    format_cookie_str,
)
from clearway.browser._engine import BrowserEngine, sanitize_header_value
from clearway.browser._evaluator import ScriptEvaluator
from clearway.browser._interceptor import (
    CaptureHandle,
    CaptureSession,
    RequestInterceptor,
)
from clearway.browser._manager import Operation, SurfaceManager
from clearway.browser._patchright import PatchrightSurface
from clearway.browser._surface import PageObserver, Surface

__all__ = [
    "BrowserEngine",
    "CaptureHandle",
    "CaptureSession",
    "ClearanceDetector",
    "ClearanceResult",
    "ClearanceSolver",
    "ClearanceState",
    "Operation",
    "PageObserver",
    "PatchrightSurface",
    "RequestInterceptor",
    "ScriptEvaluator",
    "Surface",
    "SurfaceManager",
    "format_cookie_str",
    "sanitize_header_value",
]
