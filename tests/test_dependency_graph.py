"""Tests for the dependency graph (task_engine/graph.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from timeline_engine.errors import (
    ConflictError,
    ConstraintViolationError,
    ErrorKind,
    InvalidArgumentError,
    NotFoundError,
)
from timeline_engine.task_engine.engine import TaskEngine
from timeline_engine.task_engine.graph import DependencyGraph, iter_downstream
from timeline_engine.task_engine.model import Dependency, Task
from timeline_engine.task_engine.store import FileBoardStore, MemoryBoardStore


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".timeline_engine"
    d.mkdir()
    return d


@pytest.fixture
def engine(state_dir: Path) -> TaskEngine:
    return TaskEngine(FileBoardStore(state_dir))


def _tasks(engine: TaskEngine, *titles: str, project_id: str = "p1") -> list[Task]:
    return [engine.create_task(project_id, title) for title in titles]


# ---------------------------------------------------------------------------
# Insertion invariants
# ---------------------------------------------------------------------------

class TestAddDependency:
    def test_add_dependency(self, engine: TaskEngine) -> None:
        a, b = _tasks(engine, "A", "B")
        dep = engine.add_dependency(b.id, a.id)

        assert dep.blocking_task_id == a.id
        assert dep.blocked_task_id == b.id
        assert dep.project_id == "p1"
        assert dep.blocking_title == "A"
        assert dep.blocked_title == "B"
        assert b.id in engine.downstream(a.id)
        assert engine.downstream(b.id) == []

    def test_missing_tasks_raise_not_found(self, engine: TaskEngine) -> None:
        (a,) = _tasks(engine, "A")
        with pytest.raises(NotFoundError, match="Blocked task"):
            engine.add_dependency("task-missing", a.id)
        with pytest.raises(NotFoundError, match="Blocking task"):
            engine.add_dependency(a.id, "task-missing")

    def test_self_dependency_raises(self, engine: TaskEngine) -> None:
        (a,) = _tasks(engine, "A")
        with pytest.raises(InvalidArgumentError, match="itself") as excinfo:
            engine.add_dependency(a.id, a.id)
        assert excinfo.value.kind == ErrorKind.INVALID_ARGUMENT

    def test_cross_project_raises(self, engine: TaskEngine) -> None:
        (a,) = _tasks(engine, "A", project_id="p1")
        (b,) = _tasks(engine, "B", project_id="p2")
        with pytest.raises(InvalidArgumentError, match="same project"):
            engine.add_dependency(b.id, a.id)

    def test_duplicate_raises_conflict(self, engine: TaskEngine) -> None:
        a, b = _tasks(engine, "A", "B")
        engine.add_dependency(b.id, a.id)
        with pytest.raises(ConflictError, match="already exists") as excinfo:
            engine.add_dependency(b.id, a.id)
        assert excinfo.value.kind == ErrorKind.CONFLICT

    def test_reverse_edge_raises_constraint_violation(self, engine: TaskEngine) -> None:
        a, b = _tasks(engine, "A", "B")
        engine.add_dependency(a.id, b.id)
        with pytest.raises(ConstraintViolationError, match="circular") as excinfo:
            engine.add_dependency(b.id, a.id)
        assert excinfo.value.kind == ErrorKind.CONSTRAINT_VIOLATION

    def test_checks_run_in_order(self, engine: TaskEngine) -> None:
        # A missing task wins over the self-dependency check.
        with pytest.raises(NotFoundError):
            engine.add_dependency("task-missing", "task-missing")

    def test_direct_mode_allows_longer_cycles(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)
        engine.add_dependency(a.id, c.id)  # A -> B -> C -> A slips through

        assert sorted(engine.downstream(a.id)) == sorted([b.id, c.id])

    def test_transitive_mode_rejects_longer_cycles(self, state_dir: Path) -> None:
        engine = TaskEngine(FileBoardStore(state_dir), cycle_check="transitive")
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)
        with pytest.raises(ConstraintViolationError, match="downstream"):
            engine.add_dependency(a.id, c.id)
        assert engine.dependencies(a.id) == []

    def test_failed_insert_writes_nothing(self, engine: TaskEngine) -> None:
        a, b = _tasks(engine, "A", "B")
        engine.add_dependency(b.id, a.id)
        with pytest.raises(ConflictError):
            engine.add_dependency(b.id, a.id)
        assert len(engine.dependents(a.id)) == 1

    def test_unknown_cycle_check_mode(self) -> None:
        with pytest.raises(ValueError, match="cycle_check"):
            DependencyGraph(MemoryBoardStore(), cycle_check="sometimes")


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

class TestRemoveDependency:
    def test_remove_dependency(self, engine: TaskEngine) -> None:
        a, b = _tasks(engine, "A", "B")
        dep = engine.add_dependency(b.id, a.id)

        removed = engine.remove_dependency(dep.id)
        assert removed.id == dep.id
        assert b.id not in engine.downstream(a.id)

    def test_remove_keeps_alternate_path(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        direct = engine.add_dependency(c.id, a.id)
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        engine.remove_dependency(direct.id)
        assert c.id in engine.downstream(a.id)

    def test_remove_missing_raises(self, engine: TaskEngine) -> None:
        with pytest.raises(NotFoundError, match="Dependency not found"):
            engine.remove_dependency("dep-missing")

    def test_delete_task_cascades_edges(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        removed = engine.delete_task(b.id)
        assert len(removed) == 2
        assert engine.downstream(a.id) == []
        assert engine.dependencies(c.id) == []
        with pytest.raises(NotFoundError):
            engine.get_task(b.id)

    def test_delete_task_cascades_to_subtasks_and_their_edges(self, engine: TaskEngine) -> None:
        parent = engine.create_task("p1", "Parent")
        child = engine.create_task("p1", "Child", parent_task_id=parent.id)
        grandchild = engine.create_task("p1", "Grandchild", parent_task_id=child.id)
        other, later = _tasks(engine, "Other", "Later")
        engine.add_dependency(other.id, child.id)
        engine.add_dependency(later.id, grandchild.id)
        engine.add_dependency(child.id, parent.id)
        kept = engine.add_dependency(later.id, other.id)

        removed = engine.delete_task(parent.id)

        assert len(removed) == 3
        assert [t.id for t in engine.list_tasks("p1")] == [other.id, later.id]
        remaining = engine.store.read_snapshot().list_dependencies("p1")
        assert [d.id for d in remaining] == [kept.id]


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

class TestDownstream:
    def test_breadth_first_order(self, engine: TaskEngine) -> None:
        a, b, c, d = _tasks(engine, "A", "B", "C", "D")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(d.id, b.id)
        engine.add_dependency(c.id, a.id)

        assert engine.downstream(a.id) == [b.id, c.id, d.id]

    def test_diamond_visits_each_task_once(self, engine: TaskEngine) -> None:
        a, b, c, d = _tasks(engine, "A", "B", "C", "D")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, a.id)
        engine.add_dependency(d.id, b.id)
        engine.add_dependency(d.id, c.id)

        reached = engine.downstream(a.id)
        assert sorted(reached) == sorted([b.id, c.id, d.id])
        assert reached.count(d.id) == 1

    def test_downstream_is_lazy(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        walker = engine.graph.downstream(a.id)
        assert next(walker) == b.id
        assert next(walker) == c.id
        with pytest.raises(StopIteration):
            next(walker)

    def test_cycle_terminates_and_excludes_start(self) -> None:
        store = MemoryBoardStore()
        with store.transaction() as tx:
            for tid in ("a", "b", "c"):
                tx.add_task(Task(id=tid, project_id="p1", title=tid.upper()))
            tx.add_dependency(Dependency(blocking_task_id="a", blocked_task_id="b"))
            tx.add_dependency(Dependency(blocking_task_id="b", blocked_task_id="c"))
            tx.add_dependency(Dependency(blocking_task_id="c", blocked_task_id="a"))

        assert list(iter_downstream(store.read_snapshot(), "a")) == ["b", "c"]

    def test_unknown_task_has_no_downstream(self, engine: TaskEngine) -> None:
        assert engine.downstream("task-unknown") == []


class TestDirectAccessors:
    def test_dependents_and_dependencies(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, a.id)

        assert [d.blocked_task_id for d in engine.dependents(a.id)] == [b.id, c.id]
        assert [d.blocking_task_id for d in engine.dependencies(b.id)] == [a.id]
        assert engine.dependencies(a.id) == []

    def test_execution_order(self, engine: TaskEngine) -> None:
        a, b, c = _tasks(engine, "A", "B", "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        assert engine.execution_order("p1") == [[a.id], [b.id], [c.id]]

    def test_execution_order_skips_cycles(self, engine: TaskEngine) -> None:
        a, b, c, d = _tasks(engine, "A", "B", "C", "D")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)
        engine.add_dependency(a.id, c.id)

        batches = engine.execution_order("p1")
        flat = [tid for batch in batches for tid in batch]
        assert flat == [d.id]
