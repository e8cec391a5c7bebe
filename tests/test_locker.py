from __future__ import annotations

import threading

import allure
import pytest

from conftest import LOCK_URL, RecordingEndpoint
from iped_worker.execution.errors import LockError
from iped_worker.execution.locker import ExecutionContext, RemoteLocker

pytestmark = [
    allure.epic("Job Execution"),
    allure.feature("Distributed Lock"),
]


def _locker(endpoint: RecordingEndpoint) -> RemoteLocker:
    return RemoteLocker(ExecutionContext(), endpoint.notifier(LOCK_URL))


def test_acquire_then_release_leaves_worker_ready(endpoint: RecordingEndpoint) -> None:
    locker = _locker(endpoint)

    locker.acquire("/data/case1")
    assert locker.context.busy
    assert locker.context.held_evidence_path == "/data/case1"
    locker.release()

    assert not locker.context.busy
    assert not locker.context.slot.locked()
    assert endpoint.types == ["LOCK", "UNLOCK"]
    assert endpoint.bodies("UNLOCK")[0]["payload"] == {"evidencePath": "/data/case1"}


def test_failed_acquire_rolls_back_state(endpoint: RecordingEndpoint) -> None:
    endpoint.fail_types.add("LOCK")
    locker = _locker(endpoint)

    with pytest.raises(LockError, match="could not lock /data/case1"):
        locker.acquire("/data/case1")

    assert not locker.context.busy
    assert not locker.context.slot.locked()


def test_failed_release_still_clears_local_state(endpoint: RecordingEndpoint) -> None:
    endpoint.fail_types.add("UNLOCK")
    locker = _locker(endpoint)
    locker.acquire("/data/case1")

    with pytest.raises(LockError, match="could not unlock"):
        locker.release()

    assert not locker.context.busy
    assert not locker.context.slot.locked()


def test_held_releases_when_body_raises(endpoint: RecordingEndpoint) -> None:
    locker = _locker(endpoint)

    with pytest.raises(RuntimeError, match="boom"), locker.held("/data/case1"):
        raise RuntimeError("boom")

    assert endpoint.types == ["LOCK", "UNLOCK"]
    assert not locker.context.busy


def test_held_logs_unlock_failure(
    endpoint: RecordingEndpoint,
    caplog: pytest.LogCaptureFixture,
) -> None:
    endpoint.fail_types.add("UNLOCK")
    locker = _locker(endpoint)

    with locker.held("/data/case1"):
        pass

    assert "could not unlock /data/case1" in caplog.text
    assert not locker.context.busy


def test_second_acquire_waits_for_release(endpoint: RecordingEndpoint) -> None:
    locker = _locker(endpoint)
    locker.acquire("/data/case1")
    acquired = threading.Event()

    def _second() -> None:
        locker.acquire("/data/case2")
        acquired.set()

    thread = threading.Thread(target=_second)
    thread.start()
    assert not acquired.wait(timeout=0.2)

    locker.release()
    assert acquired.wait(timeout=5)
    thread.join(timeout=5)

    assert locker.context.held_evidence_path == "/data/case2"
    assert endpoint.types == ["LOCK", "UNLOCK", "LOCK"]
    locker.release()
