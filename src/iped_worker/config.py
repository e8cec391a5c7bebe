"""Runtime configuration for the IPED worker."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass(slots=True)
class ToolSettings:
    """How to invoke the IPED jar."""

    jar_path: str = ""
    java_bin: str = "java"
    heap_size: str = "8G"
    default_profile: str = "forensic"


@dataclass(slots=True)
class RemoteSettings:
    """Lock service and notifier endpoints."""

    lock_url: str = ""
    notify_url: str = ""
    request_timeout_seconds: float = 10.0


@dataclass(slots=True)
class ServerSettings:
    """HTTP adapter settings."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 80
    start_wait_seconds: float = 5.0


@dataclass(slots=True)
class WatchSettings:
    """Polling intake settings."""

    url: str = ""
    deadline_seconds: float = 3_600.0
    batch_deadline_seconds: float = 60.0
    poll_interval_seconds: float = 5.0


@dataclass(slots=True)
class ThrottleSettings:
    """Progress event rate limiting."""

    interval_seconds: float = 1.0
    max_workers: int = 4


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    hostname: str = field(default_factory=socket.gethostname)
    tool: ToolSettings = field(default_factory=ToolSettings)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            hostname=os.getenv("HOSTNAME") or socket.gethostname(),
            tool=ToolSettings(
                jar_path=os.getenv("IPEDJAR", ""),
                java_bin=os.getenv("JAVA_BIN", "java"),
                heap_size=os.getenv("MEMORY", "8G"),
                default_profile=os.getenv("IPED_DEFAULT_PROFILE", "forensic"),
            ),
            remote=RemoteSettings(
                lock_url=os.getenv("LOCK_URL", ""),
                notify_url=os.getenv("NOTIFY_URL", ""),
                request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10.0")),
            ),
            server=ServerSettings(
                host=os.getenv("HOST", "0.0.0.0"),  # noqa: S104
                port=int(os.getenv("PORT", "80")),
                start_wait_seconds=float(os.getenv("START_WAIT_SECONDS", "5.0")),
            ),
            watch=WatchSettings(
                url=os.getenv("WATCH_URL", ""),
                deadline_seconds=float(os.getenv("WATCH_DEADLINE_SECONDS", "3600")),
                batch_deadline_seconds=float(os.getenv("WATCH_BATCH_DEADLINE_SECONDS", "60")),
                poll_interval_seconds=float(os.getenv("WATCH_POLL_INTERVAL_SECONDS", "5")),
            ),
            throttle=ThrottleSettings(
                interval_seconds=float(os.getenv("THROTTLE_INTERVAL_SECONDS", "1.0")),
                max_workers=int(os.getenv("THROTTLE_MAX_WORKERS", "4")),
            ),
        )

    def validate_for_execution(self) -> None:
        """Raise configuration error if the worker cannot run jobs."""

        if not self.tool.jar_path:
            raise ValueError("IPEDJAR must be set to the IPED jar path.")
        if not self.tool.heap_size:
            raise ValueError("MEMORY must not be empty.")
        if not self.remote.lock_url:
            raise ValueError("LOCK_URL must be set.")
        if not self.remote.notify_url:
            raise ValueError("NOTIFY_URL must be set.")
        _validate_url("LOCK_URL", self.remote.lock_url)
        _validate_url("NOTIFY_URL", self.remote.notify_url)
        if self.remote.request_timeout_seconds <= 0:
            raise ValueError("REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.server.start_wait_seconds <= 0:
            raise ValueError("START_WAIT_SECONDS must be > 0.")
        if self.throttle.interval_seconds <= 0:
            raise ValueError("THROTTLE_INTERVAL_SECONDS must be > 0.")
        if self.throttle.max_workers <= 0:
            raise ValueError("THROTTLE_MAX_WORKERS must be a positive integer.")

    def validate_for_watch(self) -> None:
        """Raise configuration error if polling intake is misconfigured."""

        if not self.watch.url:
            raise ValueError("WATCH_URL must be set. Set WATCH_URL or pass --watch-url.")
        _validate_url("WATCH_URL", self.watch.url)
        if self.watch.deadline_seconds <= 0:
            raise ValueError("WATCH_DEADLINE_SECONDS must be > 0.")
        if self.watch.batch_deadline_seconds <= 0:
            raise ValueError("WATCH_BATCH_DEADLINE_SECONDS must be > 0.")
        if self.watch.poll_interval_seconds < 0:
            raise ValueError("WATCH_POLL_INTERVAL_SECONDS must be >= 0.")


def _validate_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
