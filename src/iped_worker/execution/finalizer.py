"""Post-run permission normalisation and optional relocation of IPED output."""

from __future__ import annotations

import logging
import shutil
import stat
from pathlib import Path

from iped_worker.execution.errors import DestinationExistsError, FinalizeError

logger = logging.getLogger(__name__)

PUBLISHED_DIR_MODE = 0o755
_EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH

# Portable IPED output ships launchers and a bundled JRE that must stay runnable.
EXECUTABLE_SUBPATHS: tuple[str, ...] = (
    "IPED/tools",
    "IPED/jre/bin",
    "IPED/jre/lib",
    "IPED/lib",
)


def finalize(output_dir: Path, relocate_to: str | Path | None = None) -> Path:
    """Publish ``output_dir`` and return the directory the results live in."""

    try:
        output_dir.chmod(PUBLISHED_DIR_MODE)
    except OSError as error:
        raise FinalizeError(f"could not chmod {output_dir}: {error}") from error

    for subpath in EXECUTABLE_SUBPATHS:
        mark_executable(output_dir / subpath)

    if not relocate_to:
        return output_dir
    return relocate(output_dir, Path(relocate_to))


def mark_executable(root: Path) -> int:
    """Add execute bits under ``root``; failures are logged and skipped.

    Symlinks are skipped. Returns how many paths were updated.
    """

    if not root.exists():
        return 0
    updated = 0
    for path in (root, *root.rglob("*")):
        if path.is_symlink():
            continue
        try:
            mode = path.stat().st_mode
            path.chmod(stat.S_IMODE(mode) | _EXECUTE_BITS)
        except OSError as error:
            logger.warning("Could not mark %s executable: %s", path, error)
            continue
        updated += 1
    return updated


def relocate(output_dir: Path, destination: Path) -> Path:
    """Move the whole output tree to ``destination``, which must not exist."""

    if destination.exists():
        raise DestinationExistsError(f"destination already exists: {destination}")
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(output_dir), str(destination))
    except OSError as error:
        raise FinalizeError(f"could not move {output_dir} to {destination}: {error}") from error
    logger.info("Moved %s to %s", output_dir, destination)
    return destination
