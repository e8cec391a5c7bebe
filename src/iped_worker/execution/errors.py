"""Error taxonomy for job execution."""

from __future__ import annotations


class IpedWorkerError(RuntimeError):
    """Base class for failures that end a job."""


class ValidationError(IpedWorkerError):
    """Job request is unusable (no evidence path, evidence missing on disk)."""


class LockError(IpedWorkerError):
    """Remote lock service rejected or failed a LOCK/UNLOCK call."""


class SpawnError(IpedWorkerError):
    """The tool could not be started or its output directory prepared."""


class ExecutionError(IpedWorkerError):
    """The tool exited non-zero, was killed, or its output could not be captured."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class OutputDuplicationError(ExecutionError):
    """Tee targets accepted a different number of bytes."""


class NotifyError(IpedWorkerError):
    """A notification could not be delivered."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FinalizeError(IpedWorkerError):
    """Permission normalisation or relocation failed after a successful run."""


class DestinationExistsError(FinalizeError):
    """Relocation target already exists; nothing was moved."""
