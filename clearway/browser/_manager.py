"""Ownership of the single shared browser surface.

The surface lives in a one-slot pool owned by a dedicated worker thread.
Every operation (script evaluation, challenge clearance, request
capture) is a job placed on the worker's FIFO queue; the worker checks
the surface out, runs the job, resets the surface and checks it back
in before taking the next job. Callers block on the job's future, so
at most one operation drives the surface at any instant and waiting
callers are served in arrival order.

The engine is thread affine (patchright's sync API must stay on the
thread that started it), which is why ``acquire()`` and ``release()``
only ever run on the worker.
"""

import logging
import queue
import threading
import time
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable

from clearway._errors import ClearwayError, EngineUnavailable, OperationTimeout
from clearway.browser._surface import Surface

logger = logging.getLogger("clearway")

DEFAULT_IDLE_TIMEOUT = 300.0

_STOP = object()


class Operation:
    """Handle to a queued or running surface job.

    ``cancel()`` removes a job that has not started yet; for a running
    job it sets ``cancel_event``, which the job loop polls between
    engine pumps.
    """

    def __init__(self, label: str):
        self.label = label
        self.cancel_event = threading.Event()
        self._started = threading.Event()
        self._future: Future = Future()

    def wait_started(self, poll: float = 0.1) -> None:
        """Block until the worker picks the job up (or it ends unrun)."""
        while not self._started.wait(poll):
            if self._future.done():
                return

    def cancel(self) -> None:
        self.cancel_event.set()
        self._future.cancel()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None):
        """Block until the job finishes and return its result."""
        value = self._future.result(timeout)
        if self.cancelled:
            raise CancelledError(self.label)
        return value


class SurfaceManager:
    """Single-slot surface pool with checkout/checkin and a FIFO worker.

    Args:
        factory: Zero-argument callable building a new ``Surface``.
        idle_timeout: Seconds a checked-in surface may sit unused before
            the next checkout replaces it.
    """

    def __init__(
        self,
        factory: Callable[[], Surface],
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ):
        self._factory = factory
        self._idle_timeout = idle_timeout
        self._surface: Surface | None = None
        self._last_used: float = 0.0
        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Caller side
    # ------------------------------------------------------------------

    def submit(
        self,
        job: Callable[[Surface, threading.Event], object],
        label: str = "operation",
    ) -> Operation:
        """Queue ``job(surface, cancel_event)`` for exclusive execution."""
        if self._closed:
            raise ClearwayError("SurfaceManager is closed")
        op = Operation(label)
        self._ensure_worker()
        self._queue.put((job, op))
        logger.debug("Queued %s (%d waiting)", label, self._queue.qsize())
        return op

    def run(
        self,
        job: Callable[[Surface, threading.Event], object],
        label: str = "operation",
        timeout: float | None = None,
    ):
        """Submit ``job`` and block for its result.

        If ``timeout`` elapses, or the waiting thread is interrupted, the
        job is cancelled before the exception propagates.
        """
        op = self.submit(job, label)
        try:
            return op.result(timeout)
        except FutureTimeout:
            op.cancel()
            raise OperationTimeout(label, timeout or 0.0) from None
        except BaseException:
            op.cancel()
            raise

    def close(self, timeout: float = 10.0) -> None:
        """Stop the worker and close the surface on its own thread."""
        with self._worker_lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
        if worker is None or not worker.is_alive():
            return
        self._queue.put((_STOP, None))
        if worker is not threading.current_thread():
            worker.join(timeout)
        logger.debug("SurfaceManager closed")

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._work,
                name="clearway-surface",
                daemon=True,
            )
            self._worker.start()

    def _work(self) -> None:
        while True:
            job, op = self._queue.get()
            if job is _STOP:
                self._evict()
                return
            if not op._future.set_running_or_notify_cancel():
                logger.debug("Skipping cancelled %s", op.label)
                continue
            op._started.set()
            self._execute(job, op)

    def _execute(self, job, op: Operation) -> None:
        try:
            surface = self.acquire()
        except Exception as e:
            logger.warning("Cannot acquire browser surface for %s: %s", op.label, e)
            op._future.set_exception(e)
            return

        result = None
        error: BaseException | None = None
        try:
            result = job(surface, op.cancel_event)
        except Exception as e:
            error = e
        finally:
            self.release(surface)

        if error is not None:
            op._future.set_exception(error)
        else:
            op._future.set_result(result)

    def acquire(self) -> Surface:
        """Check out the surface, creating or replacing it as needed."""
        surface = self._surface
        if surface is not None:
            idle = time.monotonic() - self._last_used
            if self._last_used > 0 and idle > self._idle_timeout:
                logger.debug("Surface idle for %.0fs, replacing", idle)
                self._evict()
            elif not surface.is_alive():
                logger.debug("Surface no longer alive, replacing")
                self._evict()
            else:
                return surface

        try:
            self._surface = self._factory()
        except EngineUnavailable:
            raise
        except Exception as e:
            raise EngineUnavailable(str(e)) from e
        logger.info("Browser surface created")
        return self._surface

    def release(self, surface: Surface) -> None:
        """Reset the surface to a neutral state and check it back in."""
        try:
            surface.stop_loading()
            surface.set_observer(None)
            surface.set_user_agent(None)
            surface.blank()
            surface.clear_history()
        except Exception:
            logger.warning("Surface reset failed, discarding it", exc_info=True)
            self._evict()
        self._last_used = time.monotonic()

    def _evict(self) -> None:
        surface, self._surface = self._surface, None
        self._last_used = 0.0
        if surface is None:
            return
        try:
            surface.close()
        except Exception:
            logger.debug("Error closing surface", exc_info=True)
