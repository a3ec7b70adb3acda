from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta

import allure

from qagen.config import DEFAULT_PAUSE_UNTIL
from qagen.generation.backend import ChatCompletionRequest, ChatCompletionResult
from qagen.generation.errors import MalformedInputError, ModelTransportError, QuotaExhaustedError
from qagen.generation.gate import ConcurrencyGate
from qagen.generation.models import IndexPush, InformPush, JobCreate, JobOutcome, TrainingMode
from qagen.generation.repository import TrainingRepository
from qagen.generation.worker import BILL_APP_NAME, PAUSE_INFORM_TITLE, JobWorker, WorkerPool
from qagen.storage.common import UNLOCKED_EPOCH

pytestmark = [
    allure.epic("QA Generation"),
    allure.feature("Job Worker"),
]

PHOTOSYNTHESIS_TEXT = (
    "Photosynthesis is the process by which green plants use sunlight to turn "
    "water and carbon dioxide into glucose and oxygen."
)
PHOTOSYNTHESIS_ANSWER = (
    "Q1: What is photosynthesis?\n"
    "A1: The process plants use to turn light, water and CO2 into glucose and oxygen."
)
PROMPT_TOKENS = 1_200
TOKEN_LIMIT = 16_000


class FakeBackend:
    def __init__(
        self,
        *,
        content: str = PHOTOSYNTHESIS_ANSWER,
        total_tokens: int = 321,
        error: Exception | None = None,
    ) -> None:
        self.content = content
        self.total_tokens = total_tokens
        self.error = error
        self.requests: list[ChatCompletionRequest] = []
        self._lock = threading.Lock()

    def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        with self._lock:
            self.requests.append(request)
        if self.error is not None:
            raise self.error
        return ChatCompletionResult(content=self.content, total_tokens=self.total_tokens)


class FailingIndexer:
    def push_data(self, push: IndexPush) -> int:
        raise RuntimeError(f"vector store unavailable for {push.kb_id}")


class FailingNotifier:
    def send_inform(self, inform: InformPush) -> None:
        raise RuntimeError(f"cannot notify {inform.user_id}")


class BrokeGuard:
    def ensure_balance(self, user_id: str) -> None:
        raise QuotaExhaustedError(f"user {user_id} has no balance")


def _worker(repository: TrainingRepository, backend: FakeBackend, **overrides) -> JobWorker:
    options = {
        "repository": repository,
        "backend": backend,
        "gate": ConcurrencyGate(5),
        "indexer": repository,
        "billing": repository,
        "notifier": repository,
        "model": "gpt-test",
        "token_limit": TOKEN_LIMIT,
        "token_counter": lambda _messages: PROMPT_TOKENS,
        "retry_delay_seconds": 0,
    }
    options.update(overrides)
    return JobWorker(**options)


def _enqueue(
    repository: TrainingRepository,
    *,
    job_id: str,
    user_id: str = "user-1",
    text: str = PHOTOSYNTHESIS_TEXT,
    prompt: str | None = None,
) -> None:
    repository.enqueue_job(
        JobCreate(
            job_id=job_id,
            user_id=user_id,
            kb_id="kb-bio",
            q=text,
            prompt=prompt,
            source="biology.pdf",
            file_origin="file-7",
        ),
    )


def test_successful_job_is_forwarded_billed_and_deleted(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    backend = FakeBackend()
    worker = _worker(repository, backend)

    outcome = worker.run_once()

    assert outcome is JobOutcome.SUCCEEDED
    assert repository.get_job("job-1") is None
    indexed = repository.list_jobs(mode=TrainingMode.INDEX)
    assert [(row.q, row.a, row.kb_id, row.source, row.file_origin) for row in indexed] == [
        (
            "What is photosynthesis?\n"
            "The process plants use to turn light, water and CO2 into glucose and oxygen.",
            "",
            "kb-bio",
            "biology.pdf",
            "file-7",
        ),
    ]
    assert repository.count_bills("user-1") == 1
    assert repository.total_billed_tokens("user-1") == 321
    assert worker.gate.active == 0


def test_request_uses_remaining_token_budget(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    backend = FakeBackend()

    _worker(repository, backend).run_once()

    assert len(backend.requests) == 1
    request = backend.requests[0]
    assert request.max_tokens == TOKEN_LIMIT - PROMPT_TOKENS
    assert request.model == "gpt-test"
    assert request.stream is False
    assert request.messages[0]["role"] == "user"
    assert PHOTOSYNTHESIS_TEXT in request.messages[0]["content"]


def test_custom_prompt_replaces_default_template(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1", text="Cells divide.", prompt="Quiz me on: {{text}}")
    backend = FakeBackend()

    _worker(repository, backend).run_once()

    assert backend.requests[0].messages == [
        {"role": "user", "content": "Quiz me on: Cells divide."},
    ]


def test_unstructured_answer_is_forwarded_as_chunks(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    backend = FakeBackend(content="Plants make sugar from light.")

    assert _worker(repository, backend).run_once() is JobOutcome.SUCCEEDED

    indexed = repository.list_jobs(mode=TrainingMode.INDEX)
    assert [row.q for row in indexed] == ["Plants make sugar from light."]
    assert repository.count_bills("user-1") == 1


def test_empty_answer_finishes_job_without_bill(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    backend = FakeBackend(content="   ")

    assert _worker(repository, backend).run_once() is JobOutcome.SUCCEEDED

    assert repository.get_job("job-1") is None
    assert repository.count_jobs(mode=TrainingMode.INDEX) == 0
    assert repository.count_bills("user-1") == 0


def test_quota_error_pauses_all_user_jobs_and_notifies_once(
    repository: TrainingRepository,
) -> None:
    for index in range(3):
        _enqueue(repository, job_id=f"poor-{index}", user_id="poor")
    backend = FakeBackend(error=QuotaExhaustedError("insufficient balance", status_code=402))
    worker = _worker(repository, backend)

    outcome = worker.run_once()

    assert outcome is JobOutcome.PAUSED
    for index in range(3):
        job = repository.get_job(f"poor-{index}")
        assert job is not None
        assert job.lock_time == DEFAULT_PAUSE_UNTIL
    informs = repository.list_informs(user_id="poor")
    assert [inform.title for inform in informs] == [PAUSE_INFORM_TITLE]
    assert repository.count_bills("poor") == 0
    assert worker.run_once() is JobOutcome.DRAINED
    assert len(backend.requests) == 1


def test_quota_pause_leaves_other_users_claimable(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="poor-0", user_id="poor")
    worker = _worker(repository, FakeBackend(error=QuotaExhaustedError("no quota")))

    assert worker.run_once() is JobOutcome.PAUSED

    _enqueue(repository, job_id="rich-0", user_id="rich")
    claimed = repository.claim_next(mode=TrainingMode.QA, stale_after=timedelta(minutes=4))
    assert claimed is not None
    assert claimed.job_id == "rich-0"


def test_balance_guard_pauses_before_model_call(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    backend = FakeBackend()

    outcome = _worker(repository, backend, balance_guard=BrokeGuard()).run_once()

    assert outcome is JobOutcome.PAUSED
    assert backend.requests == []


def test_failed_notice_does_not_undo_pause(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(
        repository,
        FakeBackend(error=QuotaExhaustedError("no quota")),
        notifier=FailingNotifier(),
    )

    assert worker.run_once() is JobOutcome.PAUSED

    job = repository.get_job("job-1")
    assert job is not None
    assert job.lock_time == DEFAULT_PAUSE_UNTIL


def test_malformed_input_deletes_only_that_job(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    _enqueue(repository, job_id="job-2")
    backend = FakeBackend(error=MalformedInputError("invalid message format", status_code=400))

    outcome = _worker(repository, backend).run_once()

    assert outcome is JobOutcome.DELETED
    remaining = repository.list_jobs(mode=TrainingMode.QA)
    assert len(remaining) == 1
    assert remaining[0].lock_time == UNLOCKED_EPOCH
    assert repository.list_informs(user_id="user-1") == []


def test_blank_text_is_deleted_without_model_call(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="blank", text="  \n ")
    backend = FakeBackend()

    assert _worker(repository, backend).run_once() is JobOutcome.DELETED

    assert backend.requests == []
    assert repository.get_job("blank") is None


def test_transport_error_leaves_job_locked_for_retry(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(repository, FakeBackend(error=ModelTransportError("timed out")))
    before = datetime.now(tz=UTC) - timedelta(seconds=5)

    assert worker.run_once() is JobOutcome.RETRY

    job = repository.get_job("job-1")
    assert job is not None
    assert job.lock_time is not None
    assert job.lock_time >= before
    assert worker.gate.active == 0
    assert worker.run_once() is JobOutcome.DRAINED


def test_unexpected_error_is_retried(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(repository, FakeBackend(error=KeyError("choices")))

    assert worker.run_once() is JobOutcome.RETRY
    assert repository.get_job("job-1") is not None


def test_indexing_failure_keeps_job_for_retry(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(repository, FakeBackend(), indexer=FailingIndexer())

    assert worker.run_once() is JobOutcome.RETRY
    assert repository.get_job("job-1") is not None


def test_full_gate_denies_without_claiming(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    gate = ConcurrencyGate(1)
    assert gate.try_admit()
    backend = FakeBackend()

    outcome = _worker(repository, backend, gate=gate).run_once()

    assert outcome is JobOutcome.DENIED
    assert backend.requests == []
    job = repository.get_job("job-1")
    assert job is not None
    assert job.lock_time == UNLOCKED_EPOCH
    assert gate.active == 1


def test_empty_backlog_is_drained(repository: TrainingRepository) -> None:
    worker = _worker(repository, FakeBackend())

    assert worker.run_once() is JobOutcome.DRAINED
    assert worker.gate.active == 0


def test_stop_request_denies_new_cycles(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(repository, FakeBackend())

    worker.request_stop()

    assert worker.stop_requested
    assert worker.run_once() is JobOutcome.DENIED
    assert repository.get_job("job-1") is not None


def test_run_loop_drains_backlog(repository: TrainingRepository) -> None:
    for index in range(3):
        _enqueue(repository, job_id=f"job-{index}")

    summary = _worker(repository, FakeBackend()).run_loop()

    assert (summary.processed, summary.succeeded, summary.drained) == (3, 3, 1)
    assert repository.count_jobs(mode=TrainingMode.QA) == 0
    assert repository.count_jobs(mode=TrainingMode.INDEX) == 3
    assert repository.count_bills("user-1") == 3


def test_run_loop_moves_past_failed_job(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")

    summary = _worker(repository, FakeBackend(error=ModelTransportError("502"))).run_loop()

    assert (summary.processed, summary.retried, summary.drained) == (1, 1, 1)


def test_run_loop_respects_max_jobs(repository: TrainingRepository) -> None:
    for index in range(3):
        _enqueue(repository, job_id=f"job-{index}")

    summary = _worker(repository, FakeBackend()).run_loop(max_jobs=2)

    assert summary.processed == 2
    assert repository.count_jobs(mode=TrainingMode.QA) == 1


def test_bill_failure_does_not_fail_job(repository: TrainingRepository) -> None:
    class FailingBilling:
        def push_bill(self, bill) -> None:
            raise RuntimeError(f"billing down for {bill.user_id}")

    _enqueue(repository, job_id="job-1")

    outcome = _worker(repository, FakeBackend(), billing=FailingBilling()).run_once()

    assert outcome is JobOutcome.SUCCEEDED
    assert repository.get_job("job-1") is None


def test_worker_pool_processes_each_job_once(repository: TrainingRepository) -> None:
    for index in range(8):
        _enqueue(repository, job_id=f"job-{index}")
    backend = FakeBackend()
    gate = ConcurrencyGate(5)
    pool = WorkerPool(
        [
            _worker(repository, backend, gate=gate, worker_id=f"qa-worker-{index}")
            for index in range(3)
        ],
    )

    pool.start()
    summary = pool.join(timeout=60)

    assert summary.succeeded == 8
    assert len(backend.requests) == 8
    assert repository.count_jobs(mode=TrainingMode.QA) == 0
    assert repository.count_jobs(mode=TrainingMode.INDEX) == 8
    assert gate.active == 0


def test_bill_uses_worker_app_name(repository: TrainingRepository) -> None:
    recorded = []

    class RecordingBilling:
        def push_bill(self, bill) -> None:
            recorded.append(bill)

    _enqueue(repository, job_id="job-1")

    _worker(repository, FakeBackend(total_tokens=77), billing=RecordingBilling()).run_once()

    assert [(bill.user_id, bill.total_tokens, bill.app_name, bill.model) for bill in recorded] == [
        ("user-1", 77, BILL_APP_NAME, "gpt-test"),
    ]


def test_run_loop_waits_retry_delay(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(
        repository,
        FakeBackend(error=ModelTransportError("502")),
        retry_delay_seconds=0.5,
    )

    started = time.monotonic()
    summary = worker.run_loop()
    elapsed = time.monotonic() - started

    assert (summary.retried, summary.drained) == (1, 1)
    assert elapsed >= 0.45


def test_request_stop_cancels_pending_retry_wait(repository: TrainingRepository) -> None:
    _enqueue(repository, job_id="job-1")
    worker = _worker(
        repository,
        FakeBackend(error=ModelTransportError("502")),
        retry_delay_seconds=30,
    )
    stopper = threading.Timer(0.3, worker.request_stop)

    started = time.monotonic()
    stopper.start()
    try:
        summary = worker.run_loop()
    finally:
        stopper.cancel()
    elapsed = time.monotonic() - started

    assert summary.retried == 1
    assert summary.drained == 0
    assert elapsed < 10
