"""Initial task run, stack run and event tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "task_runs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("input_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_json", sa.Text(), nullable=True),
        sa.Column("waiting_on_stack_run_id", sa.String(), nullable=True),
        sa.Column("root_stack_run_id", sa.String(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_runs_task_id", "task_runs", ["task_id"], unique=False)
    op.create_index("ix_task_runs_status", "task_runs", ["status"], unique=False)
    op.create_index(
        "ix_task_runs_root_stack_run_id",
        "task_runs",
        ["root_stack_run_id"],
        unique=False,
    )
    op.create_index(
        "idx_task_runs_status_updated",
        "task_runs",
        ["status", "updated_at"],
        unique=False,
    )

    op.create_table(
        "stack_runs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("parent_stack_run_id", sa.String(), nullable=True),
        sa.Column("parent_task_run_id", sa.String(), nullable=False),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("method_name", sa.String(), nullable=False),
        sa.Column("args_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_json", sa.Text(), nullable=True),
        sa.Column("continuation", sa.LargeBinary(), nullable=True),
        sa.Column("resume_payload_json", sa.Text(), nullable=True),
        sa.Column("waiting_on_stack_run_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["parent_stack_run_id"], ["stack_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_task_run_id"], ["task_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["waiting_on_stack_run_id"],
            ["stack_runs.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_stack_runs_parent_stack_run_id",
        "stack_runs",
        ["parent_stack_run_id"],
        unique=False,
    )
    op.create_index(
        "ix_stack_runs_parent_task_run_id",
        "stack_runs",
        ["parent_task_run_id"],
        unique=False,
    )
    op.create_index("ix_stack_runs_service_name", "stack_runs", ["service_name"], unique=False)
    op.create_index("ix_stack_runs_status", "stack_runs", ["status"], unique=False)
    op.create_index(
        "idx_stack_runs_status_updated",
        "stack_runs",
        ["status", "updated_at"],
        unique=False,
    )
    op.create_index(
        "uq_stack_runs_waiting_on",
        "stack_runs",
        ["waiting_on_stack_run_id"],
        unique=True,
        sqlite_where=sa.text("waiting_on_stack_run_id IS NOT NULL"),
    )

    op.create_table(
        "stack_run_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stack_run_id", sa.String(), nullable=False),
        sa.Column("task_run_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["stack_run_id"], ["stack_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_run_id"], ["task_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_stack_run_events_stack_run_id",
        "stack_run_events",
        ["stack_run_id"],
        unique=False,
    )
    op.create_index(
        "ix_stack_run_events_event_type",
        "stack_run_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_stack_run_events_task_time",
        "stack_run_events",
        ["task_run_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("stack_run_events")
    op.drop_table("stack_runs")
    op.drop_table("task_runs")
