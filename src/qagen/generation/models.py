"""Domain models for the question-generation backlog."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TrainingMode(str, Enum):
    """Which stage a backlog row is waiting for."""

    QA = "qa"
    INDEX = "index"


class JobOutcome(str, Enum):
    """Result of one admission/claim/process cycle."""

    DENIED = "denied"
    DRAINED = "drained"
    SUCCEEDED = "succeeded"
    DELETED = "deleted"
    PAUSED = "paused"
    RETRY = "retry"


@dataclass(slots=True)
class JobCreate:
    """Input payload for adding a row to the backlog."""

    user_id: str
    kb_id: str
    q: str
    mode: TrainingMode = TrainingMode.QA
    a: str = ""
    prompt: str | None = None
    source: str | None = None
    file_origin: str | None = None
    job_id: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable backlog row for worker and CLI."""

    job_id: str
    user_id: str
    kb_id: str
    mode: TrainingMode
    prompt: str | None
    q: str
    a: str
    source: str | None
    file_origin: str | None
    lock_time: datetime | None
    created_at: datetime


@dataclass(frozen=True, slots=True)
class QAPair:
    """One retrievable unit derived from model output or fallback chunking."""

    question: str
    answer: str = ""


@dataclass(slots=True)
class IndexItem:
    """QA pair annotated with provenance for the indexing stage."""

    question: str
    answer: str
    source: str | None
    file_origin: str | None


@dataclass(slots=True)
class IndexPush:
    """Payload handed to the indexing collaborator."""

    kb_id: str
    user_id: str
    mode: TrainingMode
    data: list[IndexItem] = field(default_factory=list)


@dataclass(slots=True)
class BillPush:
    """Usage record for one successful generation."""

    user_id: str
    total_tokens: int
    app_name: str
    model: str | None = None


@dataclass(slots=True)
class InformPush:
    """Out-of-band user notification."""

    user_id: str
    title: str
    content: str
    type: str = "system"


@dataclass(slots=True)
class InformView:
    inform_id: int
    user_id: str
    type: str
    title: str
    content: str
    read: bool
    created_at: datetime


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    deleted: int = 0
    paused: int = 0
    retried: int = 0
    denied: int = 0
    drained: int = 0

    def add(self, outcome: JobOutcome) -> None:
        if outcome is JobOutcome.DENIED:
            self.denied += 1
            return
        if outcome is JobOutcome.DRAINED:
            self.drained += 1
            return
        self.processed += 1
        if outcome is JobOutcome.SUCCEEDED:
            self.succeeded += 1
        elif outcome is JobOutcome.DELETED:
            self.deleted += 1
        elif outcome is JobOutcome.PAUSED:
            self.paused += 1
        elif outcome is JobOutcome.RETRY:
            self.retried += 1

    def merge(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.deleted += other.deleted
        self.paused += other.paused
        self.retried += other.retried
        self.denied += other.denied
        self.drained += other.drained
