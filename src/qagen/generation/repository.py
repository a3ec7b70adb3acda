"""Persistent backlog repository: atomic claim, delete, user-wide pause."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from qagen.generation.models import (
    BillPush,
    IndexPush,
    InformPush,
    InformView,
    JobCreate,
    JobView,
    TrainingMode,
)
from qagen.storage.alembic_runner import upgrade_head
from qagen.storage.common import (
    UNLOCKED_EPOCH,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from qagen.storage.sqlmodel_models import TrainingData, UsageBill, UserInform

logger = logging.getLogger(__name__)

_JOB_COLUMNS = (
    TrainingData.job_id,
    TrainingData.user_id,
    TrainingData.kb_id,
    TrainingData.mode,
    TrainingData.prompt,
    TrainingData.q,
    TrainingData.a,
    TrainingData.source,
    TrainingData.file_origin,
    TrainingData.lock_time,
    TrainingData.created_at,
)


class TaskStore(Protocol):
    """Backlog operations the worker relies on."""

    def claim_next(self, *, mode: TrainingMode, stale_after: timedelta) -> JobView | None:
        """Lock and return one eligible job, or ``None`` when nothing is eligible."""

    def delete_job(self, job_id: str) -> bool:
        """Remove a job; removing an absent job is a no-op."""

    def pause_user_jobs(self, user_id: str, *, until: datetime) -> int:
        """Lock every job of the user until ``until``; return affected rows."""


class TrainingRepository:
    """Backlog persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_job(self, payload: JobCreate) -> JobView:
        """Add an unlocked row to the backlog."""

        row = TrainingData(
            job_id=payload.job_id or uuid4().hex,
            user_id=payload.user_id,
            kb_id=payload.kb_id,
            mode=payload.mode.value,
            prompt=payload.prompt,
            q=payload.q,
            a=payload.a,
            source=payload.source,
            file_origin=payload.file_origin,
            lock_time=to_db_datetime(UNLOCKED_EPOCH),
            created_at=to_db_datetime(utc_now()),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim_next(self, *, mode: TrainingMode, stale_after: timedelta) -> JobView | None:
        """Atomically lock one eligible job.

        The candidate subquery and the lock stamp run as one UPDATE statement,
        and the eligibility predicate is repeated on the outer row, so two
        racing claimants can never both stamp the same job.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        eligible = or_(
            col(TrainingData.lock_time).is_(None),
            col(TrainingData.lock_time) <= cutoff,
        )
        candidate = (
            sa_select(TrainingData.job_id)
            .where(col(TrainingData.mode) == mode.value, eligible)
            .order_by(
                col(TrainingData.lock_time).asc(),
                col(TrainingData.created_at).asc(),
            )
            .limit(1)
            .scalar_subquery()
        )
        statement = (
            sa_update(TrainingData)
            .where(col(TrainingData.job_id) == candidate, eligible)
            .values(lock_time=to_db_datetime(now))
            .returning(*_JOB_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        with Session(self.engine) as session:
            row = session.exec(statement).one_or_none()  # type: ignore[call-overload]
            session.commit()
        if row is None:
            return None
        return _row_to_job_view(row._mapping)

    def delete_job(self, job_id: str) -> bool:
        """Delete a job by id; idempotent."""

        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sa_delete(TrainingData).where(col(TrainingData.job_id) == job_id),
            )
            session.commit()
            return result.rowcount == 1

    def pause_user_jobs(self, user_id: str, *, until: datetime) -> int:
        """Push the lock of all the user's jobs to ``until`` without deleting them."""

        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sa_update(TrainingData)
                .where(col(TrainingData.user_id) == user_id)
                .values(lock_time=to_db_datetime(until)),
            )
            session.commit()
            return int(result.rowcount)

    def resume_user_jobs(self, user_id: str) -> int:
        """Make the user's paused jobs eligible again, e.g. after a recharge."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sa_update(TrainingData)
                .where(
                    col(TrainingData.user_id) == user_id,
                    col(TrainingData.lock_time) > now,
                )
                .values(lock_time=to_db_datetime(UNLOCKED_EPOCH)),
            )
            session.commit()
            return int(result.rowcount)

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrainingData).where(TrainingData.job_id == job_id),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        user_id: str | None = None,
        mode: TrainingMode | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List oldest backlog rows first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(TrainingData)
            if user_id is not None:
                statement = statement.where(TrainingData.user_id == user_id)
            if mode is not None:
                statement = statement.where(TrainingData.mode == mode.value)
            statement = statement.order_by(col(TrainingData.created_at).asc()).limit(limit)
            rows = session.exec(statement).all()
            return [_to_job_view(row) for row in rows]

    def count_jobs(self, *, mode: TrainingMode | None = None) -> int:
        with Session(self.engine) as session:
            statement = select(func.count()).select_from(TrainingData)
            if mode is not None:
                statement = statement.where(TrainingData.mode == mode.value)
            return int(session.exec(statement).one())

    def push_data(self, push: IndexPush) -> int:
        """Queue QA pairs for vector indexing as ``index`` backlog rows."""

        now = to_db_datetime(utc_now())
        unlocked = to_db_datetime(UNLOCKED_EPOCH)
        rows = [
            TrainingData(
                job_id=uuid4().hex,
                user_id=push.user_id,
                kb_id=push.kb_id,
                mode=push.mode.value,
                q=item.question,
                a=item.answer,
                source=item.source,
                file_origin=item.file_origin,
                lock_time=unlocked,
                created_at=now,
            )
            for item in push.data
            if item.question.strip()
        ]
        if not rows:
            return 0
        with Session(self.engine) as session:
            session.add_all(rows)
            session.commit()
        return len(rows)

    def push_bill(self, bill: BillPush) -> None:
        with Session(self.engine) as session:
            session.add(
                UsageBill(
                    user_id=bill.user_id,
                    app_name=bill.app_name,
                    model=bill.model,
                    total_tokens=bill.total_tokens,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def total_billed_tokens(self, user_id: str) -> int:
        with Session(self.engine) as session:
            total = session.exec(
                select(func.coalesce(func.sum(UsageBill.total_tokens), 0)).where(
                    UsageBill.user_id == user_id,
                ),
            ).one()
            return int(total)

    def count_bills(self, user_id: str) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(UsageBill)
                    .where(UsageBill.user_id == user_id),
                ).one(),
            )

    def send_inform(self, inform: InformPush) -> None:
        with Session(self.engine) as session:
            session.add(
                UserInform(
                    user_id=inform.user_id,
                    type=inform.type,
                    title=inform.title,
                    content=inform.content,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
        logger.info("Inform sent to user %s: %s", inform.user_id, inform.title)

    def list_informs(self, *, user_id: str, limit: int = 20) -> list[InformView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(UserInform)
                .where(UserInform.user_id == user_id)
                .order_by(col(UserInform.created_at).desc())
                .limit(limit),
            ).all()
        return [
            InformView(
                inform_id=row.id or 0,
                user_id=row.user_id,
                type=row.type,
                title=row.title,
                content=row.content,
                read=row.read,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]


def _row_to_job_view(values: Mapping[str, Any]) -> JobView:
    lock_time = values["lock_time"]
    return JobView(
        job_id=values["job_id"],
        user_id=values["user_id"],
        kb_id=values["kb_id"],
        mode=TrainingMode(values["mode"]),
        prompt=values["prompt"],
        q=values["q"],
        a=values["a"],
        source=values["source"],
        file_origin=values["file_origin"],
        lock_time=to_utc_aware_datetime(lock_time) if lock_time is not None else None,
        created_at=to_utc_aware_datetime(values["created_at"]),
    )


def _to_job_view(row: TrainingData) -> JobView:
    return JobView(
        job_id=row.job_id,
        user_id=row.user_id,
        kb_id=row.kb_id,
        mode=TrainingMode(row.mode),
        prompt=row.prompt,
        q=row.q,
        a=row.a,
        source=row.source,
        file_origin=row.file_origin,
        lock_time=to_utc_aware_datetime(row.lock_time) if row.lock_time is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
    )
