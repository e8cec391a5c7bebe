"""Progress extraction from IPED console output."""

from __future__ import annotations

import re
from typing import NamedTuple

from iped_worker.execution.models import Event, EventType

# IPED prints e.g. "... [indexer.process.ProgressConsole]  Processando 2153/3591 (7%) ..."
_PROGRESS_RE = re.compile(r"Processando ([0-9]+)/([0-9]+)")


class Progress(NamedTuple):
    processed: int
    found: int
    matched: bool


NO_PROGRESS = Progress(0, 0, False)


def extract_progress(text: str) -> Progress:
    """Return item counts from the first ``Processando P/F`` in ``text``."""

    match = _PROGRESS_RE.search(text)
    if match is None:
        return NO_PROGRESS
    try:
        return Progress(int(match.group(1)), int(match.group(2)), True)
    except ValueError:
        return NO_PROGRESS


def event_progress(event: Event) -> Progress:
    """Like :func:`extract_progress`, but only for ``progress`` events."""

    if event.type is not EventType.PROGRESS:
        return NO_PROGRESS
    return extract_progress(event.progress)
