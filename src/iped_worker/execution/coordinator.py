"""Job coordinator: lock -> run -> notify -> finalize -> unlock for one job."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from iped_worker.config import ThrottleSettings
from iped_worker.execution.errors import (
    FinalizeError,
    IpedWorkerError,
    NotifyError,
    ValidationError,
)
from iped_worker.execution.finalizer import finalize
from iped_worker.execution.locker import ExecutionContext, RemoteLocker
from iped_worker.execution.metrics import RESULT_FAILURE, RESULT_SUCCESS, WorkerMetrics
from iped_worker.execution.models import Event, EventType, Job, JobOutcome
from iped_worker.execution.progress import event_progress
from iped_worker.execution.runner import ToolRunner
from iped_worker.execution.throttle import EventThrottle
from iped_worker.http.notifier import Notifier

logger = logging.getLogger(__name__)


def validate_job(job: Job) -> None:
    if not job.evidence_path:
        raise ValidationError("evidencePath is required")
    if not job.evidence.exists():
        raise ValidationError(f"evidence not found: {job.evidence_path}")


class JobCoordinator:
    """Run one job end to end and report its lifecycle to the notifier.

    Within a job the notifier sees LOCK, running, progress..., exactly one of
    done/failed, then UNLOCK. UNLOCK is attempted on every path once LOCK
    succeeded. A finalize failure after a successful run is reported as
    ``done`` to the notifier but raised to the caller.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        locker: RemoteLocker,
        runner: ToolRunner,
        notifier: Notifier,
        metrics: WorkerMetrics,
        throttle: ThrottleSettings | None = None,
        finalizer: Callable[[Path, str], Path] = finalize,
    ) -> None:
        self.locker = locker
        self.runner = runner
        self.notifier = notifier
        self.metrics = metrics
        self.throttle_settings = throttle or ThrottleSettings()
        self._finalize = finalizer

    @property
    def context(self) -> ExecutionContext:
        return self.locker.context

    def run(self, job: Job) -> JobOutcome:
        """Execute ``job``; raise an :class:`IpedWorkerError` subclass on failure."""

        self.metrics.record_call(job.evidence_path)
        try:
            validate_job(job)
            with self.locker.held(job.evidence_path):
                outcome = self._run_locked(job)
        except IpedWorkerError as error:
            self.metrics.record_finish(job.evidence_path, RESULT_FAILURE)
            logger.error("Job %s failed: %s", job.evidence_path, error)
            raise
        self.metrics.record_finish(job.evidence_path, RESULT_SUCCESS)
        logger.info("Job %s finished: %s", job.evidence_path, outcome.output_dir)
        return outcome

    def _run_locked(self, job: Job) -> JobOutcome:
        throttle = EventThrottle(
            self.notifier.send,
            interval_seconds=self.throttle_settings.interval_seconds,
            max_workers=self.throttle_settings.max_workers,
        )
        try:
            with throttle:
                output_dir = self.runner.prepare_output_dir(job)
                tool = self.runner.spawn(
                    job,
                    output_dir=output_dir,
                    context=self.context,
                    on_line=lambda line: self._observe(job, throttle, line),
                )
                try:
                    self._notify(EventType.RUNNING, job)
                except NotifyError:
                    tool.terminate()
                    raise
                self.metrics.set_running(job.evidence_path, True)
                exit_code = tool.wait()
        except IpedWorkerError as error:
            self.metrics.set_running(job.evidence_path, False)
            self._notify_failed(job, error)
            raise

        self.metrics.set_running(job.evidence_path, False)
        finalize_error: FinalizeError | None = None
        published_dir = output_dir
        try:
            published_dir = self._finalize(output_dir, job.relocate_path)
        except FinalizeError as error:
            finalize_error = error

        try:
            self._notify(EventType.DONE, job)
        except NotifyError as error:
            if finalize_error is None:
                raise
            logger.warning("%s", error)
        if finalize_error is not None:
            raise finalize_error

        return JobOutcome(
            job=job,
            output_dir=published_dir,
            exit_code=exit_code,
            relocated_to=published_dir if job.relocate_path else None,
        )

    def _observe(self, job: Job, throttle: EventThrottle, line: str) -> None:
        event = Event(EventType.PROGRESS, job.evidence_path, line)
        progress = event_progress(event)
        if progress.matched:
            self.metrics.record_progress(job.evidence_path, progress.processed, progress.found)
        throttle.submit(event)

    def _notify(self, event_type: EventType, job: Job) -> None:
        self.notifier.send(Event(event_type, job.evidence_path))

    def _notify_failed(self, job: Job, error: IpedWorkerError) -> None:
        try:
            self._notify(EventType.FAILED, job)
        except NotifyError as notify_error:
            logger.warning(
                "Could not report failure of %s (%s): %s",
                job.evidence_path,
                error,
                notify_error,
            )
