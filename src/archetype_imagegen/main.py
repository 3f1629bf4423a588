"""CLI entrypoint for archetype-imagegen."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from archetype_imagegen import __version__
from archetype_imagegen.jobs.controllers import (
    ImageJobCliController,
    JobCreateCommand,
    JobListCommand,
    JobMaintenanceCommand,
    JobProcessCommand,
    JobStatusCommand,
)
from archetype_imagegen.jobs.errors import ImageJobError

click.rich_click.USE_MARKDOWN = True
JOB_CONTROLLER = ImageJobCliController()


@click.group()
@click.version_option(version=__version__, prog_name="archetype-imagegen")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def archetype_imagegen(log_level: str) -> None:
    """Archetype image generation CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@archetype_imagegen.group()
def jobs() -> None:
    """Image generation job commands."""


@jobs.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--prompt", required=True, help="Image description for the archetype.")
@click.option(
    "--style-prompt",
    default=None,
    help="Shared style prompt appended to the description.",
)
@click.option("--subject-ref", default=None, help="Archetype id receiving the image.")
@click.option("--subject-name", default=None, help="Archetype display name.")
@click.option(
    "--process/--no-process",
    default=False,
    show_default=True,
    help="Run the coordinator for the new job in this invocation.",
)
def jobs_create(  # noqa: PLR0913
    db_path: Path | None,
    prompt: str,
    style_prompt: str | None,
    subject_ref: str | None,
    subject_name: str | None,
    process: bool,
) -> None:
    """Queue an image generation job."""

    _emit_or_fail(
        lambda: JOB_CONTROLLER.create(
            JobCreateCommand(
                db_path=db_path,
                prompt=prompt,
                style_prompt=style_prompt,
                subject_ref=subject_ref,
                subject_name=subject_name,
                process=process,
            ),
        ),
    )


@jobs.command("process")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-wait-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Give up after this many seconds; defaults to ARCHETYPE_IMAGEGEN_MAX_WAIT_SECONDS.",
)
@click.argument("job_id")
def jobs_process(db_path: Path | None, max_wait_seconds: int | None, job_id: str) -> None:
    """Wait for the job's turn and run it. Safe to invoke redundantly."""

    _emit_or_fail(
        lambda: JOB_CONTROLLER.process(
            JobProcessCommand(
                db_path=db_path,
                job_id=job_id,
                max_wait_seconds=max_wait_seconds,
            ),
        ),
    )


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit a JSON object.")
@click.argument("job_id")
def jobs_status(db_path: Path | None, as_json: bool, job_id: str) -> None:
    """Show job status and estimated queue position."""

    _emit_or_fail(
        lambda: JOB_CONTROLLER.status(
            JobStatusCommand(db_path=db_path, job_id=job_id, as_json=as_json),
        ),
    )


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum number of jobs to display.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent jobs, newest first."""

    _emit_or_fail(
        lambda: JOB_CONTROLLER.list_jobs(
            JobListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@jobs.command("clear-queue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_clear_queue(db_path: Path | None) -> None:
    """Fail every pending job (operational recovery)."""

    _emit_or_fail(lambda: JOB_CONTROLLER.clear_queue(JobMaintenanceCommand(db_path=db_path)))


@jobs.command("purge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=None,
    help="Retention window; defaults to ARCHETYPE_IMAGEGEN_RETENTION_HOURS.",
)
def jobs_purge(db_path: Path | None, hours: int | None) -> None:
    """Delete jobs of any status created before the retention window."""

    _emit_or_fail(
        lambda: JOB_CONTROLLER.purge(JobMaintenanceCommand(db_path=db_path, hours=hours)),
    )


def _emit_or_fail(run: Callable[[], list[str]]) -> None:
    try:
        lines = run()
    except (ImageJobError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    archetype_imagegen()
