"""Create training backlog, usage bill and user inform tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "training_data",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("kb_id", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("q", sa.Text(), nullable=False, server_default=""),
        sa.Column("a", sa.Text(), nullable=False, server_default=""),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("file_origin", sa.String(), nullable=True),
        sa.Column("lock_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("idx_training_data_claim", "training_data", ["mode", "lock_time"])
    op.create_index("idx_training_data_user", "training_data", ["user_id"])
    op.create_index("ix_training_data_kb_id", "training_data", ["kb_id"])

    op.create_table(
        "usage_bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("app_name", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_usage_bills_user_time", "usage_bills", ["user_id", "created_at"])

    op.create_table(
        "user_informs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_user_informs_user_time", "user_informs", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_user_informs_user_time", table_name="user_informs")
    op.drop_table("user_informs")
    op.drop_index("idx_usage_bills_user_time", table_name="usage_bills")
    op.drop_table("usage_bills")
    op.drop_index("ix_training_data_kb_id", table_name="training_data")
    op.drop_index("idx_training_data_user", table_name="training_data")
    op.drop_index("idx_training_data_claim", table_name="training_data")
    op.drop_table("training_data")
