"""Subprocess runner for the IPED jar."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO, Protocol

from iped_worker.config import ToolSettings
from iped_worker.execution.errors import ExecutionError, OutputDuplicationError, SpawnError
from iped_worker.execution.locker import ExecutionContext
from iped_worker.execution.models import Job

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "IPED.log"
OUTPUT_DIR_MODE = 0o700
MODE_FLAGS: tuple[str, ...] = ("--nologfile", "--nogui", "--portable")
DEFAULT_OUTPUT_SUFFIX = "_iped"
_CHUNK_SIZE = 64 * 1024
MAX_LINE_BYTES = 64 * 1024


class ByteWriter(Protocol):
    def write(self, data: bytes, /) -> int: ...


def default_output_path(job: Job) -> str:
    return f"{job.evidence.name}{DEFAULT_OUTPUT_SUFFIX}"


def resolve_output_dir(job: Job) -> Path:
    """Absolute output directory; relative outputs hang off the evidence's parent."""

    output = Path(job.output_path or default_output_path(job))
    if output.is_absolute():
        return output
    return job.evidence.absolute().parent / output


def build_tool_args(job: Job, tool: ToolSettings) -> list[str]:
    """Argument vector for one IPED run, ``java`` executable first.

    ``additional_args`` is split on whitespace and ``additional_paths`` on
    newlines; arguments with embedded spaces are not supported.
    """

    args = [
        tool.java_bin,
        "-Djava.awt.headless=true",
        f"-Xmx{tool.heap_size}",
        "-jar",
        tool.jar_path,
        "-d",
        job.evidence.name,
        "-o",
        job.output_path or default_output_path(job),
        *MODE_FLAGS,
    ]
    profile = job.profile or tool.default_profile
    if profile:
        args.extend(["-profile", profile])
    args.extend(job.additional_args.split())
    for extra_path in job.additional_paths.split("\n"):
        extra_path = extra_path.strip()
        if extra_path:
            args.extend(["-d", extra_path])
    return args


class TeeWriter:
    """Write every chunk to ``primary`` then ``secondary``.

    Both targets must accept the full chunk; otherwise
    :class:`OutputDuplicationError` is raised.
    """

    def __init__(self, primary: ByteWriter, secondary: ByteWriter) -> None:
        self.primary = primary
        self.secondary = secondary

    def write(self, data: bytes) -> int:
        written = self.primary.write(data)
        if written != len(data):
            raise OutputDuplicationError(
                f"short write to log: {written} of {len(data)} bytes",
            )
        mirrored = self.secondary.write(data)
        if mirrored != written:
            raise OutputDuplicationError(
                f"duplicated output diverged: {written} != {mirrored} bytes",
            )
        return written


class ProgressLineWriter:
    """Split a byte stream into lines and hand each full line to ``on_line``.

    A pending line longer than ``max_line_bytes`` is emitted as is.
    """

    def __init__(
        self,
        on_line: Callable[[str], None],
        *,
        max_line_bytes: int = MAX_LINE_BYTES,
    ) -> None:
        self._on_line = on_line
        self._max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        chunk = data.replace(b"\r", b"\n")
        head, newline, tail = chunk.rpartition(b"\n")
        if newline:
            pending = bytes(self._buffer) + head
            self._buffer = bytearray(tail)
            for line in pending.split(b"\n"):
                self._emit(line)
        else:
            self._buffer.extend(chunk)
        if len(self._buffer) >= self._max_line_bytes:
            self.flush()
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            line, self._buffer = bytes(self._buffer), bytearray()
            self._emit(line)

    def _emit(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").strip()
        if text:
            self._on_line(text)


class RunningTool:
    """A spawned IPED process whose combined output is being captured."""

    def __init__(
        self,
        *,
        process: subprocess.Popen[bytes],
        log_handle: BinaryIO,
        progress_writer: ProgressLineWriter,
    ) -> None:
        self.process = process
        self._log_handle = log_handle
        self._progress_writer = progress_writer
        self._tee = TeeWriter(log_handle, progress_writer)

    def wait(self) -> int:
        """Copy output until EOF, then wait for exit; non-zero raises ExecutionError."""

        stream = self.process.stdout
        try:
            if stream is not None:
                for chunk in iter(lambda: stream.read1(_CHUNK_SIZE), b""):
                    self._tee.write(chunk)
        except OutputDuplicationError:
            terminate_process(self.process)
            raise
        except OSError as error:
            terminate_process(self.process)
            raise ExecutionError(f"could not capture tool output: {error}") from error
        finally:
            self._progress_writer.flush()
            if stream is not None:
                stream.close()
            self._log_handle.close()

        returncode = self.process.wait()
        if returncode != 0:
            raise ExecutionError(f"IPED exited with status {returncode}", exit_code=returncode)
        return returncode

    def terminate(self) -> None:
        terminate_process(self.process)
        if self.process.stdout is not None:
            self.process.stdout.close()
        self._log_handle.close()


class ToolRunner:
    """Prepare the output tree and start IPED for one job."""

    def __init__(self, tool: ToolSettings, *, hostname: str) -> None:
        self.tool = tool
        self.hostname = hostname

    def prepare_output_dir(self, job: Job) -> Path:
        output_dir = resolve_output_dir(job)
        try:
            output_dir.mkdir(mode=OUTPUT_DIR_MODE, parents=True, exist_ok=True)
            output_dir.chmod(OUTPUT_DIR_MODE)
        except OSError as error:
            raise SpawnError(f"could not prepare output directory {output_dir}: {error}") from error
        return output_dir

    def spawn(
        self,
        job: Job,
        *,
        output_dir: Path,
        context: ExecutionContext,
        on_line: Callable[[str], None],
    ) -> RunningTool:
        args = build_tool_args(job, self.tool)
        log_path = output_dir / LOG_FILE_NAME
        try:
            log_handle = log_path.open("ab")
        except OSError as error:
            raise SpawnError(f"could not open {log_path}: {error}") from error

        try:
            log_handle.write(self._log_header().encode("utf-8"))
            process = subprocess.Popen(  # noqa: S603
                args,
                cwd=job.evidence.absolute().parent,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except FileNotFoundError as error:
            log_handle.close()
            raise SpawnError(f"IPED command not found: {args[0]}") from error
        except (OSError, ValueError) as error:
            # ValueError: an argument contains a NUL byte.
            log_handle.close()
            raise SpawnError(f"IPED failed to start: {error}") from error

        context.process = process
        logger.info("Started IPED (pid %d) for %s", process.pid, job.evidence_path)
        return RunningTool(
            process=process,
            log_handle=log_handle,
            progress_writer=ProgressLineWriter(on_line),
        )

    def _log_header(self) -> str:
        started_at = datetime.now(tz=UTC).isoformat(timespec="seconds")
        return f"{started_at} iped-worker running on host {self.hostname}\n"


def terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=5)
