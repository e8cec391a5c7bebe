"""Shared test fixtures."""

from __future__ import annotations

import json
import stat
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest

from iped_worker.config import ThrottleSettings, ToolSettings
from iped_worker.execution.coordinator import JobCoordinator
from iped_worker.execution.locker import ExecutionContext, RemoteLocker
from iped_worker.execution.metrics import WorkerMetrics
from iped_worker.execution.runner import ToolRunner
from iped_worker.http.notifier import Notifier

LOCK_URL = "http://lock.test/lock"
NOTIFY_URL = "http://notify.test/events"


@dataclass
class RecordingEndpoint:
    """Fake lock service and notifier sharing one ordered event log."""

    requests: list[tuple[str, dict]] = field(default_factory=list)
    fail_types: set[str] = field(default_factory=set)
    fail_status: int = 500
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        with self._lock:
            self.requests.append((str(request.url), body))
        if body["type"] in self.fail_types:
            return httpx.Response(self.fail_status, text="nope")
        return httpx.Response(200, text="ok")

    def notifier(self, url: str) -> Notifier:
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return Notifier(url, client=client)

    @property
    def types(self) -> list[str]:
        with self._lock:
            return [body["type"] for _, body in self.requests]

    def bodies(self, event_type: str) -> list[dict]:
        with self._lock:
            return [body for _, body in self.requests if body["type"] == event_type]


@pytest.fixture()
def endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()


FakeTool = Callable[..., Path]


@pytest.fixture()
def fake_java(tmp_path: Path) -> FakeTool:
    """Write a shell script standing in for ``java -jar iped.jar``.

    The script records its argv and working directory next to the evidence,
    prints ``lines``, creates ``IPED/tools/launcher`` in the ``-o`` directory
    and exits with ``exit_code``.
    """

    def _make(lines: Sequence[str] = (), *, exit_code: int = 0, name: str = "java") -> Path:
        echo = "".join(f"printf '%s\\n' {_sh_quote(line)}\n" for line in lines)
        script = tmp_path / "bin" / name
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(
            "#!/bin/sh\n"
            'printf \'%s\\n\' "$@" > tool_args.txt\n'
            "pwd > tool_cwd.txt\n"
            'out=""\n'
            'while [ "$#" -gt 0 ]; do\n'
            '  if [ "$1" = "-o" ]; then out="$2"; fi\n'
            "  shift\n"
            "done\n"
            'mkdir -p "$out/IPED/tools"\n'
            'printf \'#!/bin/sh\\n\' > "$out/IPED/tools/launcher"\n'
            f"{echo}"
            "echo 'warning on stderr' 1>&2\n"
            f"exit {exit_code}\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


def _sh_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


@pytest.fixture()
def evidence(tmp_path: Path) -> Path:
    path = tmp_path / "data" / "case1"
    path.mkdir(parents=True)
    (path / "disk.dd").write_bytes(b"\x00" * 16)
    return path


def tool_settings(java_bin: Path | str = "java") -> ToolSettings:
    return ToolSettings(
        jar_path="/opt/iped/iped.jar",
        java_bin=str(java_bin),
        heap_size="1G",
        default_profile="forensic",
    )


def make_coordinator(
    endpoint: RecordingEndpoint,
    java_bin: Path | str,
    *,
    metrics: WorkerMetrics | None = None,
    context: ExecutionContext | None = None,
    **kwargs,
) -> JobCoordinator:
    return JobCoordinator(
        locker=RemoteLocker(context or ExecutionContext(), endpoint.notifier(LOCK_URL)),
        runner=ToolRunner(tool_settings(java_bin), hostname="worker-1"),
        notifier=endpoint.notifier(NOTIFY_URL),
        metrics=metrics or WorkerMetrics("worker-1"),
        throttle=ThrottleSettings(interval_seconds=1.0, max_workers=2),
        **kwargs,
    )


@pytest.fixture()
def coordinator_factory(endpoint: RecordingEndpoint) -> Callable[..., JobCoordinator]:
    def _make(java_bin: Path | str, **kwargs) -> JobCoordinator:
        return make_coordinator(endpoint, java_bin, **kwargs)

    return _make
