"""Controllers for IPED worker CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import httpx

from iped_worker.config import Settings
from iped_worker.execution.coordinator import JobCoordinator
from iped_worker.execution.dispatch import DispatchSummary, Dispatcher
from iped_worker.execution.errors import IpedWorkerError
from iped_worker.execution.locker import ExecutionContext, RemoteLocker
from iped_worker.execution.metrics import WorkerMetrics
from iped_worker.execution.models import Job
from iped_worker.execution.runner import ToolRunner
from iped_worker.http.notifier import Notifier
from iped_worker.http.server import create_app, serve, serve_in_background


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for a single pre-supplied job."""

    job: Job
    port: int | None = None


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the HTTP job intake."""

    host: str | None = None
    port: int | None = None


@dataclass(slots=True)
class WatchCommand:
    """CLI input for polling intake."""

    watch_url: str | None = None
    port: int | None = None


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool


@dataclass(slots=True)
class WorkerRuntime:
    """Everything one worker process wires together."""

    settings: Settings
    metrics: WorkerMetrics
    dispatcher: Dispatcher
    lock_notifier: Notifier
    event_notifier: Notifier

    def close(self) -> None:
        self.dispatcher.shutdown(wait=True)
        self.lock_notifier.close()
        self.event_notifier.close()


def build_runtime(settings: Settings, *, client: httpx.Client | None = None) -> WorkerRuntime:
    """Wire notifier, lock, runner and coordinator from settings."""

    settings.validate_for_execution()
    timeout = settings.remote.request_timeout_seconds
    lock_notifier = Notifier(settings.remote.lock_url, timeout_seconds=timeout, client=client)
    event_notifier = Notifier(settings.remote.notify_url, timeout_seconds=timeout, client=client)
    metrics = WorkerMetrics(settings.hostname)
    coordinator = JobCoordinator(
        locker=RemoteLocker(ExecutionContext(), lock_notifier),
        runner=ToolRunner(settings.tool, hostname=settings.hostname),
        notifier=event_notifier,
        metrics=metrics,
        throttle=settings.throttle,
    )
    return WorkerRuntime(
        settings=settings,
        metrics=metrics,
        dispatcher=Dispatcher(coordinator),
        lock_notifier=lock_notifier,
        event_notifier=event_notifier,
    )


class WorkerCliController:
    """Run worker commands and render their results as lines."""

    def __init__(
        self,
        settings_factory: Callable[[], Settings] = Settings.from_env,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings_factory = settings_factory
        self._client = client

    def run_job(self, command: RunJobCommand) -> CommandResult:
        with self._runtime() as runtime:
            if command.port is not None:
                self._serve_background(runtime, port=command.port)
            try:
                outcome = runtime.dispatcher.coordinator.run(command.job)
            except IpedWorkerError as error:
                return CommandResult(
                    lines=[f"Job failed: {command.job.evidence_path}", f"error: {error}"],
                    success=False,
                )
        lines = [
            f"Job finished: {command.job.evidence_path}",
            f"output_dir={outcome.output_dir}",
            f"exit_code={outcome.exit_code}",
        ]
        return CommandResult(lines=lines, success=True)

    def serve(self, command: ServeCommand) -> None:
        with self._runtime() as runtime:
            settings = runtime.settings
            app = create_app(
                runtime.dispatcher,
                runtime.metrics,
                listen=True,
                start_wait_seconds=settings.server.start_wait_seconds,
            )
            serve(
                app,
                host=command.host or settings.server.host,
                port=command.port or settings.server.port,
            )

    def watch(self, command: WatchCommand) -> CommandResult:
        with self._runtime() as runtime:
            settings = runtime.settings
            if command.watch_url:
                settings.watch.url = command.watch_url
            settings.validate_for_watch()
            self._serve_background(runtime, port=command.port or settings.server.port)
            with runtime.dispatcher.stop_on_signals():
                summary = runtime.dispatcher.watch(
                    settings.watch.url,
                    deadline_seconds=settings.watch.deadline_seconds,
                    batch_deadline_seconds=settings.watch.batch_deadline_seconds,
                    poll_interval_seconds=settings.watch.poll_interval_seconds,
                    client=self._client,
                )
        return CommandResult(lines=_render_summary(summary), success=summary.failed == 0)

    @contextmanager
    def _runtime(self) -> Iterator[WorkerRuntime]:
        runtime = build_runtime(self._settings_factory(), client=self._client)
        try:
            yield runtime
        finally:
            runtime.close()

    def _serve_background(self, runtime: WorkerRuntime, *, port: int) -> None:
        app = create_app(runtime.dispatcher, runtime.metrics, listen=False)
        serve_in_background(app, host=runtime.settings.server.host, port=port)


def _render_summary(summary: DispatchSummary) -> list[str]:
    return [
        "Watch completed:",
        f"processed={summary.processed}",
        f"succeeded={summary.succeeded}",
        f"failed={summary.failed}",
        f"skipped={summary.skipped}",
        f"idle_polls={summary.idle_polls}",
    ]
