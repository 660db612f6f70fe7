"""SQLModel ORM tables for run storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, LargeBinary, String, Text, text
from sqlmodel import Field, SQLModel


class TaskRun(SQLModel, table=True):
    __tablename__ = "task_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_runs_status_updated", "status", "updated_at"),)

    id: str = Field(primary_key=True)
    task_id: str = Field(index=True)
    input_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_json: str | None = Field(default=None, sa_column=Column(Text))
    waiting_on_stack_run_id: str | None = None
    root_stack_run_id: str | None = Field(default=None, index=True)
    cancel_requested: bool = False
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    suspended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    resumed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class StackRun(SQLModel, table=True):
    __tablename__ = "stack_runs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_stack_runs_status_updated", "status", "updated_at"),
        Index(
            "uq_stack_runs_waiting_on",
            "waiting_on_stack_run_id",
            unique=True,
            sqlite_where=text("waiting_on_stack_run_id IS NOT NULL"),
        ),
    )

    id: str = Field(primary_key=True)
    parent_stack_run_id: str | None = Field(
        default=None,
        sa_column=Column(
            String,
            ForeignKey("stack_runs.id", ondelete="CASCADE"),
            nullable=True,
            index=True,
        ),
    )
    parent_task_run_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("task_runs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    service_name: str = Field(index=True)
    method_name: str
    args_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_json: str | None = Field(default=None, sa_column=Column(Text))
    continuation: bytes | None = Field(default=None, sa_column=Column(LargeBinary))
    resume_payload_json: str | None = Field(default=None, sa_column=Column(Text))
    waiting_on_stack_run_id: str | None = Field(
        default=None,
        sa_column=Column(
            String,
            ForeignKey("stack_runs.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    generation: int = Field(default=0)
    reconcile_attempts: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class StackRunEvent(SQLModel, table=True):
    __tablename__ = "stack_run_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_stack_run_events_task_time", "task_run_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    stack_run_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("stack_runs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_run_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("task_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RunLock(SQLModel, table=True):
    __tablename__ = "run_locks"  # type: ignore[bad-override]

    lock_key: str = Field(primary_key=True)
    owner_id: str
    acquired_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
