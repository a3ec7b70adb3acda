"""Controllers for backlog and worker CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from qagen.config import Settings
from qagen.generation.backend import ChatBackend, OpenAiChatBackend
from qagen.generation.gate import ConcurrencyGate
from qagen.generation.models import JobCreate, TrainingMode, WorkerRunSummary
from qagen.generation.repository import TrainingRepository
from qagen.generation.sinks import BalanceGuard
from qagen.generation.tokens import MessageTokenCounter
from qagen.generation.worker import JobWorker, TokenCounter, WorkerPool, stop_on_signals


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for adding a question-generation job."""

    db_path: Path | None
    user_id: str
    kb_id: str
    text: str
    prompt: str | None = None
    source: str | None = None
    file_origin: str | None = None


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    user_id: str | None
    mode: TrainingMode | None
    limit: int = 50


@dataclass(slots=True)
class UserJobsCommand:
    """CLI input for user-wide pause/resume."""

    db_path: Path | None
    user_id: str


@dataclass(slots=True)
class JobDeleteCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class InformListCommand:
    db_path: Path | None
    user_id: str
    limit: int = 20


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    workers: int | None = None
    max_jobs: int | None = None


def default_backend(settings: Settings) -> ChatBackend:
    return OpenAiChatBackend(
        base_url=settings.model.base_url,
        api_key=settings.model.api_key,
        timeout_seconds=settings.model.timeout_seconds,
    )


def default_token_counter(settings: Settings) -> TokenCounter:
    return MessageTokenCounter(encoding_name=settings.model.tokenizer_encoding)


def no_balance_guard(_settings: Settings) -> BalanceGuard | None:
    """Balance is checked by the model endpoint itself (HTTP 402 and quota codes)."""

    return None


class GenerationCliController:
    """Backlog operations and worker runs exposed to the CLI."""

    def __init__(
        self,
        *,
        backend_factory: Callable[[Settings], ChatBackend] = default_backend,
        token_counter_factory: Callable[[Settings], TokenCounter] = default_token_counter,
        balance_guard_factory: Callable[[Settings], BalanceGuard | None] = no_balance_guard,
    ) -> None:
        self.backend_factory = backend_factory
        self.token_counter_factory = token_counter_factory
        self.balance_guard_factory = balance_guard_factory

    def enqueue(self, command: JobEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if not command.text.strip():
            raise ValueError("Job text must not be empty.")
        with _repository(settings) as repository:
            job = repository.enqueue_job(
                JobCreate(
                    user_id=command.user_id,
                    kb_id=command.kb_id,
                    q=command.text,
                    prompt=command.prompt,
                    source=command.source,
                    file_origin=command.file_origin,
                ),
            )
        return [f"Job enqueued: job_id={job.job_id} user_id={job.user_id} kb_id={job.kb_id}"]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                user_id=command.user_id,
                mode=command.mode,
                limit=command.limit,
            )
        if not jobs:
            return ["No jobs found."]
        lines = []
        for job in jobs:
            lock_time = job.lock_time.isoformat() if job.lock_time is not None else "-"
            preview = " ".join(job.q.split())[:60]
            lines.append(
                f"{job.job_id} mode={job.mode.value} user_id={job.user_id} "
                f"kb_id={job.kb_id} lock_time={lock_time} q={preview!r}",
            )
        return lines

    def pause_user(self, command: UserJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            paused = repository.pause_user_jobs(
                command.user_id,
                until=settings.generation.pause_until,
            )
        return [f"Paused {paused} jobs for user_id={command.user_id}"]

    def resume_user(self, command: UserJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            resumed = repository.resume_user_jobs(command.user_id)
        return [f"Resumed {resumed} jobs for user_id={command.user_id}"]

    def delete_job(self, command: JobDeleteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            deleted = repository.delete_job(command.job_id)
        if not deleted:
            return [f"Job not found (nothing deleted): job_id={command.job_id}"]
        return [f"Job deleted: job_id={command.job_id}"]

    def informs(self, command: InformListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            informs = repository.list_informs(user_id=command.user_id, limit=command.limit)
        if not informs:
            return ["No informs."]
        return [
            f"{inform.created_at.isoformat()} [{inform.type}] {inform.title}: {inform.content}"
            for inform in informs
        ]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_model_calls()
        worker_count = command.workers or settings.generation.workers
        gate = ConcurrencyGate(settings.generation.max_active_jobs)
        backend = self.backend_factory(settings)
        token_counter = self.token_counter_factory(settings)
        balance_guard = self.balance_guard_factory(settings)
        try:
            with _repository(settings) as repository:
                workers = [
                    _build_worker(
                        settings=settings,
                        repository=repository,
                        backend=backend,
                        gate=gate,
                        token_counter=token_counter,
                        balance_guard=balance_guard,
                        worker_id=f"qa-worker-{index + 1}",
                    )
                    for index in range(worker_count)
                ]
                if command.once:
                    summary = WorkerRunSummary()
                    summary.add(workers[0].run_once())
                else:
                    pool = WorkerPool(workers)
                    with stop_on_signals(lambda _signal_name: pool.stop()):
                        pool.start(max_jobs_per_worker=command.max_jobs)
                        summary = pool.join()
        finally:
            close = getattr(backend, "close", None)
            if callable(close):
                close()

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"deleted={summary.deleted} paused={summary.paused} retried={summary.retried} "
            f"drained={summary.drained} denied={summary.denied}",
        ]


def _build_worker(  # noqa: PLR0913
    *,
    settings: Settings,
    repository: TrainingRepository,
    backend: ChatBackend,
    gate: ConcurrencyGate,
    token_counter: TokenCounter,
    balance_guard: BalanceGuard | None,
    worker_id: str,
) -> JobWorker:
    return JobWorker(
        repository=repository,
        backend=backend,
        gate=gate,
        indexer=repository,
        billing=repository,
        notifier=repository,
        model=settings.model.model,
        token_limit=settings.model.token_limit,
        min_completion_tokens=settings.model.min_completion_tokens,
        temperature=settings.model.temperature,
        token_counter=token_counter,
        balance_guard=balance_guard,
        qa_theme=settings.generation.qa_theme,
        stale_after_seconds=settings.generation.stale_after_seconds,
        retry_delay_seconds=settings.generation.retry_delay_seconds,
        pause_until=settings.generation.pause_until,
        worker_id=worker_id,
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[TrainingRepository]:
    repository = TrainingRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
