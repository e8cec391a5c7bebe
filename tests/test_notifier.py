from __future__ import annotations

import json

import allure
import httpx
import pytest

from iped_worker.execution.errors import NotifyError
from iped_worker.execution.models import Event, EventType
from iped_worker.http.notifier import Notifier

pytestmark = [
    allure.epic("Remote Services"),
    allure.feature("Notification Protocol"),
]


def _notifier(handler) -> Notifier:
    return Notifier(
        "http://notify.test/events",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_send_posts_json_envelope() -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200)

    _notifier(_handler).send(Event(EventType.PROGRESS, "/data/case1", "Processando 1/2"))

    assert len(captured) == 1
    request = captured[0]
    assert request.method == "POST"
    assert str(request.url) == "http://notify.test/events"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {
        "type": "progress",
        "payload": {"evidencePath": "/data/case1", "progress": "Processando 1/2"},
    }


def test_send_omits_empty_progress() -> None:
    bodies: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    _notifier(_handler).send(Event(EventType.LOCK, "/data/case1"))

    assert bodies == [{"type": "LOCK", "payload": {"evidencePath": "/data/case1"}}]


def test_non_2xx_response_raises_notify_error() -> None:
    notifier = _notifier(lambda _request: httpx.Response(503))

    with pytest.raises(NotifyError, match="not ok: 503") as excinfo:
        notifier.send(Event(EventType.DONE, "/data/case1"))

    assert excinfo.value.status_code == 503


def test_transport_error_raises_notify_error() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotifyError, match="could not send running event"):
        _notifier(_handler).send(Event(EventType.RUNNING, "/data/case1"))
