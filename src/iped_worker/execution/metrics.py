"""In-process counters and gauges updated by the job coordinator."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"


@dataclass(slots=True)
class EvidenceMetrics:
    """Counters for one evidence path on this host."""

    calls: int = 0
    finish: Counter[str] = field(default_factory=Counter)
    running: int = 0
    processed: int = 0
    found: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "finish": dict(self.finish),
            "running": self.running,
            "processed": self.processed,
            "found": self.found,
        }


class WorkerMetrics:
    """Thread-safe metrics keyed by evidence path, labelled with the hostname."""

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname
        self._lock = threading.Lock()
        self._by_evidence: dict[str, EvidenceMetrics] = {}

    def record_call(self, evidence_path: str) -> None:
        with self._lock:
            self._entry(evidence_path).calls += 1

    def set_running(self, evidence_path: str, running: bool) -> None:
        with self._lock:
            self._entry(evidence_path).running = 1 if running else 0

    def record_progress(self, evidence_path: str, processed: int, found: int) -> None:
        with self._lock:
            entry = self._entry(evidence_path)
            entry.processed = processed
            entry.found = found

    def record_finish(self, evidence_path: str, result: str) -> None:
        with self._lock:
            entry = self._entry(evidence_path)
            entry.finish[result] += 1
            entry.running = 0

    def get(self, evidence_path: str) -> EvidenceMetrics:
        with self._lock:
            entry = self._entry(evidence_path)
            return EvidenceMetrics(
                calls=entry.calls,
                finish=Counter(entry.finish),
                running=entry.running,
                processed=entry.processed,
                found=entry.found,
            )

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "hostname": self.hostname,
                "evidence": {
                    path: entry.to_dict() for path, entry in sorted(self._by_evidence.items())
                },
            }

    def _entry(self, evidence_path: str) -> EvidenceMetrics:
        entry = self._by_evidence.get(evidence_path)
        if entry is None:
            entry = EvidenceMetrics()
            self._by_evidence[evidence_path] = entry
        return entry
