"""Synchronous JSON event delivery to the notifier and lock service."""

from __future__ import annotations

import logging

import httpx

from iped_worker.execution.errors import NotifyError
from iped_worker.execution.models import Event

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "iped-worker/0.4"


class Notifier:
    """POST events to one endpoint; any non-2xx response is a delivery failure."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )

    def send(self, event: Event) -> None:
        """Deliver ``event`` or raise :class:`NotifyError`."""

        logger.debug("event: %s %s -> %s", event.type.value, event.evidence_path, self.url)
        try:
            response = self._client.post(self.url, json=event.to_json())
        except httpx.HTTPError as error:
            raise NotifyError(f"could not send {event.type.value} event: {error}") from error
        if not response.is_success:
            raise NotifyError(
                f"response from {self.url} not ok: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> Notifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
