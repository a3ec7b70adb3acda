"""Backlog worker that turns claimed jobs into QA pairs for indexing."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta

from qagen.config import DEFAULT_PAUSE_UNTIL
from qagen.generation.backend import ChatBackend, ChatCompletionRequest
from qagen.generation.errors import ForwardingError, JobProcessingError, MalformedInputError
from qagen.generation.failure_classifier import FailureAction, classify_failure
from qagen.generation.gate import ConcurrencyGate
from qagen.generation.models import (
    BillPush,
    IndexItem,
    IndexPush,
    InformPush,
    JobOutcome,
    JobView,
    QAPair,
    TrainingMode,
    WorkerRunSummary,
)
from qagen.generation.parser import parse_qa_response
from qagen.generation.prompts import build_qa_prompt
from qagen.generation.repository import TaskStore
from qagen.generation.sinks import BalanceGuard, BillingSink, IndexingSink, Notifier
from qagen.generation.tokens import MessageTokenCounter, compute_completion_budget

logger = logging.getLogger(__name__)

BILL_APP_NAME = "QA split"
PAUSE_INFORM_TITLE = "QA task paused"
PAUSE_INFORM_CONTENT = (
    "Your account balance is insufficient, so index generation has been paused. "
    "It will continue after you recharge. Paused tasks are deleted after 7 days."
)

TokenCounter = Callable[[Sequence[dict[str, str]]], int]


class JobWorker:
    """Claims jobs one at a time and drives each through generation and forwarding."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskStore,
        backend: ChatBackend,
        gate: ConcurrencyGate,
        indexer: IndexingSink,
        billing: BillingSink,
        notifier: Notifier,
        model: str,
        token_limit: int = 16_000,
        min_completion_tokens: int = 1,
        temperature: float = 0.01,
        token_counter: TokenCounter | None = None,
        balance_guard: BalanceGuard | None = None,
        qa_theme: str | None = None,
        stale_after_seconds: int = 240,
        retry_delay_seconds: float = 1.0,
        pause_until: datetime = DEFAULT_PAUSE_UNTIL,
        worker_id: str = "qa-worker",
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.gate = gate
        self.indexer = indexer
        self.billing = billing
        self.notifier = notifier
        self.model = model
        self.token_limit = token_limit
        self.min_completion_tokens = min_completion_tokens
        self.temperature = temperature
        self.token_counter = token_counter or MessageTokenCounter()
        self.balance_guard = balance_guard
        self.qa_theme = qa_theme
        self.stale_after_seconds = stale_after_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.pause_until = pause_until
        self.worker_id = worker_id
        self._stop = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Stop after the current job; a pending retry wait ends immediately."""

        self._stop.set()

    def run_once(self) -> JobOutcome:
        """Run one admit → claim → process cycle and always give the slot back."""

        if self._stop.is_set() or not self.gate.try_admit():
            return JobOutcome.DENIED

        try:
            outcome = self._claim_and_process()
        finally:
            self.gate.release()

        if outcome is JobOutcome.DRAINED and self.gate.active == 0:
            logger.info("QA queue drained")
        return outcome

    def run_loop(self, *, max_jobs: int | None = None) -> WorkerRunSummary:
        """Drain the backlog until it is empty, admission is denied or stop is requested.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
        """

        summary = WorkerRunSummary()
        while not self._stop.is_set():
            if max_jobs is not None and summary.processed >= max_jobs:
                break
            outcome = self.run_once()
            summary.add(outcome)
            if outcome in {JobOutcome.DENIED, JobOutcome.DRAINED}:
                break
            if outcome is JobOutcome.RETRY and self._stop.wait(self.retry_delay_seconds):
                break
        return summary

    def _claim_and_process(self) -> JobOutcome:
        try:
            job = self.repository.claim_next(
                mode=TrainingMode.QA,
                stale_after=timedelta(seconds=self.stale_after_seconds),
            )
        except Exception:
            logger.exception("[%s] Claiming a QA job failed", self.worker_id)
            return JobOutcome.RETRY
        if job is None:
            return JobOutcome.DRAINED

        logger.debug("[%s] Claimed job %s for user %s", self.worker_id, job.job_id, job.user_id)
        started = time.monotonic()
        try:
            pairs = self._generate(job)
            self._forward(job, pairs)
            self.repository.delete_job(job.job_id)
        except Exception as error:  # noqa: BLE001
            return self._handle_failure(job=job, error=error)

        logger.info(
            "[%s] QA generated for job %s: pairs=%d time=%.2fs",
            self.worker_id,
            job.job_id,
            len(pairs),
            time.monotonic() - started,
        )
        return JobOutcome.SUCCEEDED

    def _generate(self, job: JobView) -> list[QAPair]:
        if self.balance_guard is not None:
            self.balance_guard.ensure_balance(job.user_id)

        messages = self._build_messages(job)
        prompt_tokens = self.token_counter(messages)
        max_tokens = compute_completion_budget(
            token_limit=self.token_limit,
            prompt_tokens=prompt_tokens,
            min_completion_tokens=self.min_completion_tokens,
        )
        result = self.backend.complete(
            ChatCompletionRequest(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=self.temperature,
            ),
        )

        pairs = parse_qa_response(result.content)
        if pairs:
            self._push_bill(job=job, total_tokens=result.total_tokens)
        else:
            logger.info(
                "[%s] QA result 0 for job %s: %r",
                self.worker_id,
                job.job_id,
                result.content,
            )
        return pairs

    def _build_messages(self, job: JobView) -> list[dict[str, str]]:
        if not job.q.strip():
            raise MalformedInputError(f"invalid message format: job {job.job_id} has no text")
        content = build_qa_prompt(text=job.q, custom_prompt=job.prompt, theme=self.qa_theme)
        if not content.strip():
            raise MalformedInputError(f"invalid message format: job {job.job_id} prompt is empty")
        return [{"role": "user", "content": content}]

    def _push_bill(self, *, job: JobView, total_tokens: int) -> None:
        try:
            self.billing.push_bill(
                BillPush(
                    user_id=job.user_id,
                    total_tokens=total_tokens,
                    app_name=BILL_APP_NAME,
                    model=self.model,
                ),
            )
        except Exception:
            # Usage is already spent; a failed bill must not re-run the model call.
            logger.exception("[%s] Billing push failed for job %s", self.worker_id, job.job_id)

    def _forward(self, job: JobView, pairs: list[QAPair]) -> None:
        push = IndexPush(
            kb_id=job.kb_id,
            user_id=job.user_id,
            mode=TrainingMode.INDEX,
            data=[
                IndexItem(
                    question=pair.question,
                    answer=pair.answer,
                    source=job.source,
                    file_origin=job.file_origin,
                )
                for pair in pairs
            ],
        )
        try:
            self.indexer.push_data(push)
        except JobProcessingError:
            raise
        except Exception as error:
            raise ForwardingError(f"Indexing push failed for kb {job.kb_id}: {error}") from error

    def _handle_failure(self, *, job: JobView, error: Exception) -> JobOutcome:
        decision = classify_failure(error)
        details = decision.to_log_details(job_id=job.job_id, user_id=job.user_id)
        if decision.error_kind is None:
            logger.error("[%s] QA generation error: %s", self.worker_id, details, exc_info=error)
        else:
            logger.warning("[%s] QA generation failed: %s %s", self.worker_id, error, details)

        try:
            if decision.action is FailureAction.TERMINAL_DELETE:
                self.repository.delete_job(job.job_id)
                return JobOutcome.DELETED
            if decision.action is FailureAction.QUOTA_PAUSE:
                self._pause_user(job.user_id)
                return JobOutcome.PAUSED
        except Exception:
            logger.exception("[%s] Failure handling for job %s failed", self.worker_id, job.job_id)
        return JobOutcome.RETRY

    def _pause_user(self, user_id: str) -> None:
        paused = self.repository.pause_user_jobs(user_id, until=self.pause_until)
        logger.warning("Insufficient balance, paused %d QA jobs of user %s", paused, user_id)
        try:
            self.notifier.send_inform(
                InformPush(
                    user_id=user_id,
                    title=PAUSE_INFORM_TITLE,
                    content=PAUSE_INFORM_CONTENT,
                ),
            )
        except Exception:
            logger.exception("Pause notice for user %s was not delivered", user_id)


class WorkerPool:
    """Runs several workers on threads against one shared gate and store."""

    def __init__(self, workers: Sequence[JobWorker]) -> None:
        if not workers:
            raise ValueError("WorkerPool needs at least one worker.")
        self.workers = list(workers)
        self._threads: list[threading.Thread] = []
        self._summary = WorkerRunSummary()
        self._lock = threading.Lock()

    def start(self, *, max_jobs_per_worker: int | None = None) -> None:
        for worker in self.workers:
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker, max_jobs_per_worker),
                daemon=True,
                name=worker.worker_id,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Started %d QA worker threads", len(self._threads))

    def stop(self) -> None:
        for worker in self.workers:
            worker.request_stop()

    def join(self, timeout: float | None = None) -> WorkerRunSummary:
        for thread in self._threads:
            thread.join(timeout=timeout)
        with self._lock:
            summary = WorkerRunSummary()
            summary.merge(self._summary)
            return summary

    def _run_worker(self, worker: JobWorker, max_jobs: int | None) -> None:
        try:
            summary = worker.run_loop(max_jobs=max_jobs)
        except Exception:
            logger.exception("QA worker %s crashed", worker.worker_id)
            return
        with self._lock:
            self._summary.merge(summary)


@contextmanager
def stop_on_signals(on_stop: Callable[[str], None]) -> Iterator[None]:
    """Call ``on_stop`` with the signal name on SIGINT/SIGTERM while active."""

    if not hasattr(signal, "SIGINT"):
        yield
        return

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        on_stop(name)

    try:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
