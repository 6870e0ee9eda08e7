"""Typed exceptions for clearway."""


class ClearwayError(Exception):
    """Base exception for all clearway errors."""


class EngineUnavailable(ClearwayError):
    """The browser engine cannot be started in this runtime."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Browser engine unavailable: {reason}")


class ChallengeDetected(ClearwayError):
    """A direct fetch was answered with an anti-bot challenge.

    Raised by request-fetching code and handed to
    ``BrowserEngine.resolve_challenge()``.
    """

    def __init__(
        self,
        challenge_type: str,
        url: str,
        status_code: int,
        user_agent: str | None = None,
    ):
        self.challenge_type = challenge_type
        self.url = url
        self.status_code = status_code
        self.user_agent = user_agent
        super().__init__(
            f"{challenge_type} challenge detected at {url} (HTTP {status_code})"
        )


class OperationTimeout(ClearwayError, TimeoutError):
    """A browser operation overran its hard deadline."""

    def __init__(self, url: str, timeout_secs: float):
        self.url = url
        self.timeout_secs = timeout_secs
        super().__init__(
            f"Browser operation on {url} exceeded {timeout_secs:.1f}s"
        )


class InterceptionFailed(ClearwayError):
    """A capture session could not be started or finalized."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Interception failed for {url}: {reason}")
