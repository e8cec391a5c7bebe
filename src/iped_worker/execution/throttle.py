"""Rate-limited, non-blocking fan-out of events to a sender."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from iped_worker.execution.models import Event, EventType

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_MAX_PENDING = 64

_CLOSE = object()


class EventThrottle:
    """Consume a stream of events and hand them to ``send`` on worker threads.

    Non-progress events are always dispatched, in submission order. At most
    one progress event is dispatched per ``interval_seconds``; the rest are
    dropped. Delivery failures are logged and never reach the producer.
    At most ``max_pending`` dispatches are in flight; beyond that progress
    events are dropped and other events wait for a free slot.
    """

    def __init__(
        self,
        send: Callable[[Event], None],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._send = send
        self._interval = interval_seconds
        self._clock = clock
        self._max_workers = max_workers
        self._pending = threading.BoundedSemaphore(max_pending)
        self._queue: queue.Queue[object] = queue.Queue()
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._last_progress_at: float | None = None
        self._closed = False
        self.dispatched = 0
        self.dropped = 0

    def start(self) -> EventThrottle:
        if self._thread is not None:
            raise RuntimeError("event throttle already started")
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="event-dispatch",
        )
        self._thread = threading.Thread(target=self._consume, daemon=True, name="event-throttle")
        self._thread.start()
        return self

    def submit(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("event throttle is closed")
        self._queue.put(event)

    def close(self) -> None:
        """Stop accepting events, drain the stream and wait for in-flight sends."""

        if self._closed:
            return
        self._closed = True
        self._queue.put(_CLOSE)
        if self._thread is not None:
            self._thread.join()
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> EventThrottle:
        return self.start()

    def __exit__(self, *_: object) -> None:
        self.close()

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            if isinstance(item, Event):
                self._ingest(item)

    def _ingest(self, event: Event) -> None:
        if self._executor is None:
            raise RuntimeError("event throttle was not started")
        if event.type is EventType.PROGRESS:
            now = self._clock()
            if self._last_progress_at is not None and now - self._last_progress_at < self._interval:
                self.dropped += 1
                return
            if not self._pending.acquire(blocking=False):
                self.dropped += 1
                logger.warning("Dropping progress event: too many dispatches in flight")
                return
            self._last_progress_at = now
        else:
            self._pending.acquire()
        self.dispatched += 1
        self._executor.submit(self._deliver, event)

    def _deliver(self, event: Event) -> None:
        try:
            self._send(event)
        except Exception as error:  # noqa: BLE001
            logger.warning("Could not deliver %s event: %s", event.type.value, error)
        finally:
            self._pending.release()
