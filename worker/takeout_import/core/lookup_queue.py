"""Serialized, rate-limited access to the geocoding provider.

Every lookup in the process goes through one queue drained by one worker
thread, so consecutive provider requests are always at least
``min_interval`` seconds apart no matter how many jobs submit at once.
Provider failures never reach the caller: they resolve to ``None``.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from takeout_import.models import LookupResult

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[LookupResult]]


@dataclass
class _PendingLookup:
    query: str
    future: "Future[Optional[LookupResult]]"


class RateLimitedLookupQueue:
    """Single-consumer queue enforcing a minimum gap between provider calls."""

    def __init__(
        self,
        lookup: Lookup,
        min_interval: float = 1.1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._lookup = lookup
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._queue: "queue.Queue[Optional[_PendingLookup]]" = queue.Queue()
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._processing = False
        self._closed = False
        self._last_dispatch: Optional[float] = None

    def submit_async(self, query: str) -> "Future[Optional[LookupResult]]":
        future: "Future[Optional[LookupResult]]" = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("lookup queue is closed")
            self._ensure_worker()
            self._queue.put(_PendingLookup(query=query, future=future))
        return future

    def submit(self, query: str) -> Optional[LookupResult]:
        """Block until ``query`` has been looked up; ``None`` means no usable match."""
        return self.submit_async(query).result()

    def status(self) -> Dict[str, Union[int, bool]]:
        with self._lock:
            return {"pending": self._queue.qsize(), "isProcessing": self._processing}

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop accepting lookups and wait for queued ones to finish."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
            if worker is not None:
                self._queue.put(None)
        if worker is not None:
            worker.join(timeout)

    def _ensure_worker(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(target=self._drain, name="lookup-queue", daemon=True)
            self._worker.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                if not item.future.set_running_or_notify_cancel():
                    continue
                with self._lock:
                    self._processing = True
                try:
                    item.future.set_result(self._dispatch(item.query))
                finally:
                    with self._lock:
                        self._processing = False
            finally:
                self._queue.task_done()

    def _dispatch(self, query: str) -> Optional[LookupResult]:
        if self._last_dispatch is not None:
            wait = self.min_interval - (self._clock() - self._last_dispatch)
            if wait > 0:
                self._sleep(wait)

        try:
            return self._lookup(query)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Lookup failed for %r: %s", query, exc)
            return None
        finally:
            self._last_dispatch = self._clock()
