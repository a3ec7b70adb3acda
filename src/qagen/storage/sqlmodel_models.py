"""SQLModel ORM tables for the training backlog."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Text, text
from sqlmodel import Field, SQLModel


class TrainingData(SQLModel, table=True):
    __tablename__ = "training_data"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_training_data_claim", "mode", "lock_time"),
        Index("idx_training_data_user", "user_id"),
    )

    job_id: str = Field(primary_key=True)
    user_id: str = Field(nullable=False)
    kb_id: str = Field(nullable=False, index=True)
    mode: str = Field(nullable=False)
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    q: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    a: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    source: str | None = None
    file_origin: str | None = None
    lock_time: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UsageBill(SQLModel, table=True):
    __tablename__ = "usage_bills"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_usage_bills_user_time", "user_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(nullable=False)
    app_name: str = Field(nullable=False)
    model: str | None = None
    total_tokens: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserInform(SQLModel, table=True):
    __tablename__ = "user_informs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_user_informs_user_time", "user_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(nullable=False)
    type: str = Field(nullable=False)
    title: str = Field(nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))
    read: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("0")),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
