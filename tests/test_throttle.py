from __future__ import annotations

import threading
import time

import allure

from iped_worker.execution.errors import NotifyError
from iped_worker.execution.models import Event, EventType
from iped_worker.execution.throttle import EventThrottle

pytestmark = [
    allure.epic("Job Execution"),
    allure.feature("Event Throttle"),
]


class _ScriptedClock:
    """Returns the next scripted reading on every call."""

    def __init__(self, *readings: float) -> None:
        self._readings = iter(readings)

    def __call__(self) -> float:
        return next(self._readings)


def _progress(text: str = "Processando 1/2") -> Event:
    return Event(EventType.PROGRESS, "/data/case1", text)


def test_non_progress_event_is_always_sent() -> None:
    sent: list[Event] = []
    with EventThrottle(sent.append) as throttle:
        throttle.submit(Event(EventType.DONE, "/data/case1"))

    assert sent == [Event(EventType.DONE, "/data/case1")]


def test_fast_progress_events_are_throttled() -> None:
    sent: list[Event] = []
    with EventThrottle(sent.append, interval_seconds=1.0) as throttle:
        throttle.submit(_progress("Processando 1/3"))
        throttle.submit(_progress("Processando 2/3"))
        throttle.submit(_progress("Processando 3/3"))

    assert [event.progress for event in sent] == ["Processando 1/3"]
    assert throttle.dispatched == 1
    assert throttle.dropped == 2


def test_progress_is_forwarded_again_after_interval() -> None:
    clock = _ScriptedClock(100.0, 100.5, 101.2, 101.9, 102.3)
    sent: list[Event] = []
    with EventThrottle(sent.append, interval_seconds=1.0, max_workers=1, clock=clock) as throttle:
        for text in ("first", "dropped", "second", "dropped too", "third"):
            throttle.submit(_progress(text))

    assert [event.progress for event in sent] == ["first", "second", "third"]
    assert throttle.dropped == 2


def test_lifecycle_events_bypass_throttle_window() -> None:
    sent: list[Event] = []
    with EventThrottle(sent.append, interval_seconds=60.0, max_workers=1) as throttle:
        throttle.submit(_progress())
        throttle.submit(_progress())
        throttle.submit(Event(EventType.RUNNING, "/data/case1"))
        throttle.submit(Event(EventType.DONE, "/data/case1"))

    assert [event.type for event in sent] == [
        EventType.PROGRESS,
        EventType.RUNNING,
        EventType.DONE,
    ]


def test_delivery_failure_does_not_reach_producer() -> None:
    attempts: list[Event] = []

    def _failing_send(event: Event) -> None:
        attempts.append(event)
        raise NotifyError("endpoint down", status_code=503)

    with EventThrottle(_failing_send) as throttle:
        throttle.submit(Event(EventType.RUNNING, "/data/case1"))
        throttle.submit(Event(EventType.DONE, "/data/case1"))

    assert len(attempts) == 2


def test_slow_sender_does_not_block_submit() -> None:
    release = threading.Event()
    sent: list[Event] = []

    def _slow_send(event: Event) -> None:
        release.wait(timeout=5)
        sent.append(event)

    throttle = EventThrottle(_slow_send, max_workers=2).start()
    throttle.submit(Event(EventType.RUNNING, "/data/case1"))
    throttle.submit(Event(EventType.DONE, "/data/case1"))
    assert sent == []
    release.set()
    throttle.close()

    assert len(sent) == 2


def _wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def test_saturated_deliveries_drop_progress_and_hold_lifecycle_events() -> None:
    release = threading.Event()
    sending = threading.Event()
    sent: list[Event] = []

    def _blocked_send(event: Event) -> None:
        sending.set()
        release.wait(timeout=5)
        sent.append(event)

    throttle = EventThrottle(_blocked_send, max_workers=2, max_pending=1).start()
    throttle.submit(Event(EventType.RUNNING, "/data/case1"))
    assert sending.wait(timeout=5)
    throttle.submit(_progress())
    assert _wait_for(lambda: throttle.dropped == 1)

    throttle.submit(Event(EventType.DONE, "/data/case1"))
    time.sleep(0.1)
    assert throttle.dispatched == 1
    assert sent == []

    release.set()
    throttle.close()

    assert [event.type for event in sent] == [EventType.RUNNING, EventType.DONE]
    assert throttle.dispatched == 2
    assert throttle.dropped == 1
