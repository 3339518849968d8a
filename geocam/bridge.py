from __future__ import annotations
import logging
import queue
import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Optional

from .compositor import Compositor
from .errors import CommunicationError, RendererBusyError
from .models import RenderRequest, RenderResult

log = logging.getLogger(__name__)


@dataclass
class _Job:
    request: RenderRequest
    future: "Future[RenderResult]"


class RenderService:
    """Runs the compositor on one long-lived worker thread.

    The worker is started lazily on the first submit and lives until
    ``shutdown()``. Exactly one request may be in flight; a second submit
    before the first resolves raises ``RendererBusyError``.
    """

    def __init__(self, compositor: Optional[Compositor] = None, name: str = "WatermarkRenderer"):
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._slot: "queue.Queue[Optional[_Job]]" = queue.Queue(maxsize=1)
        self._pending: Optional[Future] = None
        self._closed = False
        self._compositor = compositor or Compositor()
        self._name = name

    # ---------- public API ----------
    @property
    def running(self) -> bool:
        t = self._thread
        return bool(t and t.is_alive())

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._pending is not None and not self._pending.done()

    def start(self):
        with self._lock:
            if self._closed:
                raise CommunicationError("render service is shut down")
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._thread.start()

    def submit(self, request: RenderRequest) -> "Future[RenderResult]":
        """Hand the request's bitmaps to the worker; the caller's handles die here."""
        with self._lock:
            if self._closed:
                raise CommunicationError("render service is shut down")
            if self._pending is not None and not self._pending.done():
                raise RendererBusyError("a render is already in progress")
            self.start()
            job = _Job(request.hand_off(), Future())
            self._pending = job.future
            self._slot.put_nowait(job)
        return job.future

    def render(self, request: RenderRequest, timeout: Optional[float] = None) -> RenderResult:
        future = self.submit(request)
        try:
            result = future.result(timeout=timeout)
        except FuturesTimeout as e:
            raise CommunicationError(f"renderer did not answer within {timeout}s") from e
        return result.raise_for_error()

    def shutdown(self, wait: bool = True, timeout: float = 5.0):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            t = self._thread
        if t is None:
            return
        try:
            self._slot.put(None, timeout=timeout)
        except queue.Full:
            log.warning("render worker did not drain its slot, abandoning it")
            return
        if wait:
            t.join(timeout=timeout)
            if t.is_alive():
                log.warning("render worker still busy after %.1fs", timeout)

    def __enter__(self) -> "RenderService":
        return self

    def __exit__(self, *exc):
        self.shutdown()

    # ---------- internal ----------
    def _loop(self):
        log.info("render worker started")
        try:
            while True:
                job = self._slot.get()
                if job is None:
                    break
                if not job.future.set_running_or_notify_cancel():
                    job.request.close()
                    continue
                job.future.set_result(self._compositor.render(job.request))
        finally:
            log.info("render worker stopped")
