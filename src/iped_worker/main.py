"""CLI entrypoint for iped-worker."""

import logging

import rich_click as click

from iped_worker import __version__
from iped_worker.controllers import (
    RunJobCommand,
    ServeCommand,
    WatchCommand,
    WorkerCliController,
)
from iped_worker.execution.dispatch import WatchError
from iped_worker.execution.models import Job

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="iped-worker")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
    help="Logging verbosity.",
)
def iped_worker(log_level: str) -> None:
    """Run IPED jobs one at a time under a fleet-wide remote lock.

    Configuration comes from the environment: `IPEDJAR`, `LOCK_URL`,
    `NOTIFY_URL`, `MEMORY`, `PORT`, `WATCH_URL`.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@iped_worker.command("serve")
@click.option("--host", default=None, help="Bind address. Defaults to HOST or 0.0.0.0.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Listen port. Defaults to PORT or 80.",
)
def serve(host: str | None, port: int | None) -> None:
    """Accept jobs on `POST /start` and run them one at a time."""

    CONTROLLER.serve(ServeCommand(host=host, port=port))


@iped_worker.command("watch")
@click.option("--watch-url", default=None, help="Job list URL. Defaults to WATCH_URL.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Port for health and metrics endpoints. Defaults to PORT or 80.",
)
def watch(watch_url: str | None, port: int | None) -> None:
    """Poll a URL for pending jobs and run the first batch it returns."""

    try:
        result = CONTROLLER.watch(WatchCommand(watch_url=watch_url, port=port))
    except (ValueError, WatchError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("One or more jobs failed.")


@iped_worker.command("run")
@click.option("--evidence-path", required=True, help="Evidence file or directory.")
@click.option(
    "--output-path",
    default="",
    help="Output directory, absolute or relative to the evidence's parent.",
)
@click.option("--profile", default="", help="IPED profile. Defaults to IPED_DEFAULT_PROFILE.")
@click.option("--additional-args", default="", help="Extra IPED arguments, space separated.")
@click.option(
    "--additional-paths",
    default="",
    help="Extra evidence paths, newline separated.",
)
@click.option("--mv-path", default="", help="Move the finished output tree here.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Serve health and metrics endpoints on this port while the job runs.",
)
def run(  # noqa: PLR0913
    evidence_path: str,
    output_path: str,
    profile: str,
    additional_args: str,
    additional_paths: str,
    mv_path: str,
    port: int | None,
) -> None:
    """Run a single job and exit."""

    job = Job(
        evidence_path=evidence_path,
        output_path=output_path,
        profile=profile,
        additional_args=additional_args,
        additional_paths=additional_paths,
        relocate_path=mv_path,
    )
    try:
        result = CONTROLLER.run_job(RunJobCommand(job=job, port=port))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("IPED job failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    iped_worker()
