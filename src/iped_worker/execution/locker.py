"""Execution slot shared by one worker process, and the fleet-wide remote lock."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from iped_worker.execution.errors import LockError, NotifyError
from iped_worker.execution.models import Event, EventType
from iped_worker.http.notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionContext:
    """Mutable state of the single job a worker process may run.

    ``slot`` is held for a job's whole lifecycle; ``held_evidence_path`` and
    ``process`` are only written while it is held.
    """

    slot: threading.Lock = field(default_factory=threading.Lock)
    held_evidence_path: str = ""
    process: subprocess.Popen[bytes] | None = None

    @property
    def busy(self) -> bool:
        return bool(self.held_evidence_path)


class RemoteLocker:
    """Claim the local slot, then announce the claim to the lock service."""

    def __init__(self, context: ExecutionContext, notifier: Notifier) -> None:
        self.context = context
        self._notifier = notifier

    def acquire(self, evidence_path: str) -> None:
        """Block until the slot is free, then send LOCK.

        On a failed LOCK the slot is released again and :class:`LockError`
        is raised, so a failed acquire never leaves the worker busy.
        """

        self.context.slot.acquire()
        self.context.held_evidence_path = evidence_path
        try:
            self._notifier.send(Event(EventType.LOCK, evidence_path))
        except NotifyError as error:
            self.context.held_evidence_path = ""
            self.context.slot.release()
            raise LockError(f"could not lock {evidence_path}: {error}") from error
        logger.info("Lock acquired for %s", evidence_path)

    def release(self) -> None:
        """Send UNLOCK; local state is cleared even when the send fails."""

        evidence_path = self.context.held_evidence_path
        try:
            self._notifier.send(Event(EventType.UNLOCK, evidence_path))
        except NotifyError as error:
            raise LockError(f"could not unlock {evidence_path}: {error}") from error
        finally:
            self.context.held_evidence_path = ""
            self.context.process = None
            self.context.slot.release()
        logger.info("Lock released for %s", evidence_path)

    @contextmanager
    def held(self, evidence_path: str) -> Iterator[None]:
        """Hold the lock for the body; UNLOCK failures are logged, not raised."""

        self.acquire(evidence_path)
        try:
            yield
        finally:
            try:
                self.release()
            except LockError as error:
                logger.warning("%s", error)
