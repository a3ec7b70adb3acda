"""CLI entrypoint for qagen."""

import logging
from pathlib import Path

import rich_click as click

from qagen import __version__
from qagen.generation.controllers import (
    GenerationCliController,
    InformListCommand,
    JobDeleteCommand,
    JobEnqueueCommand,
    JobListCommand,
    UserJobsCommand,
    WorkerCommand,
)
from qagen.generation.models import TrainingMode

click.rich_click.USE_MARKDOWN = True
GENERATION_CONTROLLER = GenerationCliController()


@click.group()
@click.version_option(version=__version__, prog_name="qagen")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def qagen(verbose: bool) -> None:
    """Question-generation backlog CLI."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@qagen.group()
def jobs() -> None:
    """Backlog commands."""


@jobs.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="Owner of the job.")
@click.option("--kb-id", required=True, help="Knowledge base receiving generated pairs.")
@click.option("--text", default=None, help="Source text. Mutually exclusive with --text-file.")
@click.option(
    "--text-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read source text from a UTF-8 file.",
)
@click.option("--prompt", default=None, help="Custom prompt template with {{text}} placeholder.")
@click.option("--source", default=None, help="Source label stored with generated pairs.")
@click.option("--file-origin", default=None, help="File origin stored with generated pairs.")
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    user_id: str,
    kb_id: str,
    text: str | None,
    text_file: Path | None,
    prompt: str | None,
    source: str | None,
    file_origin: str | None,
) -> None:
    """Add a question-generation job to the backlog."""

    if (text is None) == (text_file is None):
        raise click.UsageError("Provide exactly one of --text or --text-file.")
    body = text if text is not None else text_file.read_text(encoding="utf-8")
    try:
        lines = GENERATION_CONTROLLER.enqueue(
            JobEnqueueCommand(
                db_path=db_path,
                user_id=user_id,
                kb_id=kb_id,
                text=body,
                prompt=prompt,
                source=source,
                file_origin=file_origin,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", default=None, help="Optional owner filter.")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in TrainingMode], case_sensitive=False),
    default=None,
    help="Optional mode filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    user_id: str | None,
    mode: str | None,
    limit: int,
) -> None:
    """List backlog rows."""

    _emit_lines(
        GENERATION_CONTROLLER.list_jobs(
            JobListCommand(
                db_path=db_path,
                user_id=user_id,
                mode=TrainingMode(mode.lower()) if mode else None,
                limit=limit,
            ),
        ),
    )


@jobs.command("pause-user")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="User whose jobs are paused.")
def jobs_pause_user(db_path: Path | None, user_id: str) -> None:
    """Push every job of a user out of the claimable window."""

    _emit_lines(
        GENERATION_CONTROLLER.pause_user(UserJobsCommand(db_path=db_path, user_id=user_id)),
    )


@jobs.command("resume-user")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="User whose paused jobs are released.")
def jobs_resume_user(db_path: Path | None, user_id: str) -> None:
    """Make a paused user's jobs claimable again."""

    _emit_lines(
        GENERATION_CONTROLLER.resume_user(UserJobsCommand(db_path=db_path, user_id=user_id)),
    )


@jobs.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_delete(db_path: Path | None, job_id: str) -> None:
    """Remove one job from the backlog."""

    _emit_lines(GENERATION_CONTROLLER.delete_job(JobDeleteCommand(db_path=db_path, job_id=job_id)))


@qagen.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one admit-claim-process cycle or drain until the backlog is empty.",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Worker threads in loop mode (defaults to QAGEN_WORKERS).",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs per worker in loop mode.",
)
def worker(
    db_path: Path | None,
    once: bool,
    workers: int | None,
    max_jobs: int | None,
) -> None:
    """Drain the question-generation backlog."""

    try:
        lines = GENERATION_CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                workers=workers,
                max_jobs=max_jobs,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@qagen.command("informs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="Recipient of the notices.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max notices to print.",
)
def informs(db_path: Path | None, user_id: str, limit: int) -> None:
    """Show user notices, for example quota pauses."""

    _emit_lines(
        GENERATION_CONTROLLER.informs(
            InformListCommand(db_path=db_path, user_id=user_id, limit=limit),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    qagen()
