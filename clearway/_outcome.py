"""Single-resolution result slot shared by competing completion signals."""

import threading

_UNSET = object()


class Outcome:
    """Resolves exactly once; later resolve attempts are ignored.

    Every signal source (page finished, poll, deadline, cap, manual
    stop) calls ``resolve()``; only the first caller wins and only the
    winner sees ``True``. Waiters block in ``wait()``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value = _UNSET
        self.source: str | None = None

    def resolve(self, value, source: str = "") -> bool:
        with self._lock:
            if self._value is not _UNSET:
                return False
            self._value = value
            self.source = source
        self._event.set()
        return True

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def value(self):
        if self._value is _UNSET:
            raise RuntimeError("Outcome not resolved yet")
        return self._value

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)
