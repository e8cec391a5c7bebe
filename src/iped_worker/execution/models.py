"""Domain models for jobs and the events they emit."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

# Wire name -> field name for job records received over HTTP or polling.
_JOB_FIELDS: dict[str, str] = {
    "evidencePath": "evidence_path",
    "outputPath": "output_path",
    "profile": "profile",
    "additionalArgs": "additional_args",
    "additionalPaths": "additional_paths",
    "mvPath": "relocate_path",
}


class EventType(str, Enum):
    """Event kinds understood by the lock service and the notifier."""

    LOCK = "LOCK"
    UNLOCK = "UNLOCK"
    RUNNING = "running"
    PROGRESS = "progress"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Job:
    """One evidence-processing request. Immutable once built."""

    evidence_path: str
    output_path: str = ""
    profile: str = ""
    additional_args: str = ""
    additional_paths: str = ""
    relocate_path: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Job:
        """Build a job from a decoded JSON object with camelCase keys."""

        if not isinstance(payload, dict):
            raise TypeError(f"job record must be a JSON object, got {type(payload).__name__}")
        values: dict[str, str] = {}
        for wire_name, field_name in _JOB_FIELDS.items():
            value = payload.get(wire_name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise TypeError(f"job field {wire_name!r} must be a string")
            values[field_name] = value
        values.setdefault("evidence_path", "")
        return cls(**values)

    @property
    def evidence(self) -> Path:
        return Path(self.evidence_path)


@dataclass(slots=True, frozen=True)
class Event:
    """Notification envelope: ``{"type": ..., "payload": {...}}`` on the wire."""

    type: EventType
    evidence_path: str
    progress: str = ""

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, str] = {"evidencePath": self.evidence_path}
        if self.progress:
            payload["progress"] = self.progress
        return {"type": self.type.value, "payload": payload}


@dataclass(slots=True)
class JobOutcome:
    """Terminal result of a successful job."""

    job: Job
    output_dir: Path
    exit_code: int
    relocated_to: Path | None = None
