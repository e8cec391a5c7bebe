"""Feed jobs to the coordinator from a single job, HTTP submissions or a watch URL."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass

import httpx

from iped_worker.execution.coordinator import JobCoordinator
from iped_worker.execution.errors import IpedWorkerError
from iped_worker.execution.models import Job, JobOutcome

logger = logging.getLogger(__name__)

DEFAULT_START_WAIT_SECONDS = 5.0


class WatchError(RuntimeError):
    """The watch URL could not be fetched or did not return a job list."""


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate dispatch counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    idle_polls: int = 0


class Dispatcher:
    """Hands jobs to one :class:`JobCoordinator`, one at a time."""

    def __init__(
        self,
        coordinator: JobCoordinator,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.coordinator = coordinator
        self._clock = clock
        self._stop = threading.Event()
        self._executor = ThreadPoolExecutor(thread_name_prefix="job")

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self, *, signal_name: str | None = None) -> None:
        if signal_name is not None:
            logger.info("Stop requested by %s; no new jobs will be started", signal_name)
        self._stop.set()

    def run_jobs(
        self,
        jobs: Iterable[Job],
        *,
        deadline_seconds: float | None = None,
    ) -> DispatchSummary:
        """Run ``jobs`` in order; after the deadline no further job is started."""

        summary = DispatchSummary()
        deadline = None if deadline_seconds is None else self._clock() + deadline_seconds
        for job in jobs:
            if self.stop_requested or (deadline is not None and self._clock() >= deadline):
                summary.skipped += 1
                continue
            summary.processed += 1
            try:
                self.coordinator.run(job)
            except IpedWorkerError:
                summary.failed += 1
                continue
            summary.succeeded += 1
        if summary.skipped:
            logger.warning("Deadline reached; %d job(s) were not started", summary.skipped)
        return summary

    def submit(
        self,
        job: Job,
        *,
        wait_seconds: float = DEFAULT_START_WAIT_SECONDS,
    ) -> IpedWorkerError | None:
        """Start ``job`` in the background and report failures seen within ``wait_seconds``.

        ``None`` means the job either finished successfully or is still
        running when the wait expired.
        """

        future = self._executor.submit(self.coordinator.run, job)
        future.add_done_callback(_log_unexpected_failure)
        try:
            future.result(timeout=wait_seconds)
        except FutureTimeoutError:
            return None
        except IpedWorkerError as error:
            return error
        return None

    def watch(  # noqa: PLR0913
        self,
        url: str,
        *,
        deadline_seconds: float,
        batch_deadline_seconds: float,
        poll_interval_seconds: float,
        client: httpx.Client | None = None,
    ) -> DispatchSummary:
        """Poll ``url`` until it returns jobs, run that batch, then return."""

        deadline = self._clock() + deadline_seconds
        owns_client = client is None
        http = client or httpx.Client(timeout=httpx.Timeout(30.0, connect=10.0))
        summary = DispatchSummary()
        try:
            while not self.stop_requested:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.info("Watch deadline reached without new jobs")
                    return summary
                jobs = fetch_jobs(http, url)
                if not jobs:
                    summary.idle_polls += 1
                    self._stop.wait(timeout=min(poll_interval_seconds, remaining))
                    continue
                logger.info("Fetched %d job(s) from %s", len(jobs), url)
                batch = self.run_jobs(jobs, deadline_seconds=batch_deadline_seconds)
                batch.idle_polls = summary.idle_polls
                return batch
            return summary
        finally:
            if owns_client:
                http.close()

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @contextmanager
    def stop_on_signals(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into a stop request for the duration of the block."""

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def fetch_jobs(client: httpx.Client, url: str) -> list[Job]:
    """GET ``url`` and parse its JSON array of job records."""

    try:
        response = client.get(url)
        response.raise_for_status()
        payloads = response.json()
    except httpx.HTTPError as error:
        raise WatchError(f"could not watch URL {url}: {error}") from error
    except ValueError as error:
        raise WatchError(f"could not parse JSON from {url}: {error}") from error
    if not isinstance(payloads, list):
        raise WatchError(f"expected a JSON array from {url}, got {type(payloads).__name__}")
    try:
        return [Job.from_payload(payload) for payload in payloads]
    except TypeError as error:
        raise WatchError(f"invalid job record from {url}: {error}") from error


def _log_unexpected_failure(future: Future[JobOutcome]) -> None:
    error = future.exception()
    if error is None or isinstance(error, IpedWorkerError):
        return
    logger.error("Job crashed", exc_info=error)
