from pathlib import Path

import allure
import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from stackrun.engine.repository import RunRepository

pytestmark = [
    allure.epic("Run Store"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = RunRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
    assert version == "20261001_0002"

    inspector = inspect(repository.engine)
    assert {"task_runs", "stack_runs", "stack_run_events", "run_locks"} <= set(
        inspector.get_table_names(),
    )
    stack_run_columns = {column["name"] for column in inspector.get_columns("stack_runs")}
    assert {"continuation", "generation", "reconcile_attempts"} <= stack_run_columns
    repository.close()


def test_one_waiter_per_child_is_enforced_by_schema(tmp_path: Path) -> None:
    repository = RunRepository(tmp_path / "migrations.db")
    repository.init_schema()
    task_run, root = repository.create_task_run(task_id="t", input_value=None)
    _, other_root = repository.create_task_run(task_id="t", input_value=None)

    with pytest.raises(IntegrityError), repository.engine.begin() as connection:
        connection.execute(
            text("UPDATE stack_runs SET waiting_on_stack_run_id = :child WHERE id IN (:a, :b)"),
            {"child": task_run.root_stack_run_id, "a": root.id, "b": other_root.id},
        )
    repository.close()
