"""clearway -- shared headless browser for anti-bot clearance and capture."""

import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clearway")
except PackageNotFoundError:
    __version__ = "0.0.0"

from clearway._challenge import (
    CLEARANCE_COOKIE,
    Protection,
    detect_protection,
    get_clearance_cookie,
)
from clearway._errors import (
    ChallengeDetected,
    ClearwayError,
    EngineUnavailable,
    InterceptionFailed,
    OperationTimeout,
)
from clearway._headers import (
    ALLOWED_HEADERS,
    BLOCKED_HEADERS,
    DEFAULT_ACCEPT_LANGUAGE,
    HeaderPolicy,
    filter_allowed,
    filter_blocked,
)
from clearway._replay import (
    ReplayClient,
    ReplayedResponse,
    parse_content_type,
    replay_request,
)
from clearway._request import (
    CaptureResult,
    CompletionReason,
    InterceptedRequest,
    InterceptionConfig,
)

__all__ = [
    "__version__",
    "ClearwayError",
    "EngineUnavailable",
    "ChallengeDetected",
    "OperationTimeout",
    "InterceptionFailed",
    "HeaderPolicy",
    "ALLOWED_HEADERS",
    "BLOCKED_HEADERS",
    "DEFAULT_ACCEPT_LANGUAGE",
    "filter_allowed",
    "filter_blocked",
    "ReplayClient",
    "ReplayedResponse",
    "parse_content_type",
    "replay_request",
    "InterceptedRequest",
    "InterceptionConfig",
    "CaptureResult",
    "CompletionReason",
    "Protection",
    "CLEARANCE_COOKIE",
    "detect_protection",
    "get_clearance_cookie",
]

# Silent by default; callers opt in via logging.getLogger("clearway").setLevel(...)
logging.getLogger("clearway").addHandler(logging.NullHandler())
