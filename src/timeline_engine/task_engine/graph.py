"""Dependency graph over the tasks of a project.

Edges point ``blocking -> blocked``.  Structural invariants are enforced on
insertion; reachability is answered with a breadth-first walk whose visited
set keeps it finite even if a cycle slipped past the insertion guard.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Iterator, Optional

from loguru import logger

from ..constants import CYCLE_CHECK_DIRECT, CYCLE_CHECK_MODES, CYCLE_CHECK_TRANSITIVE
from ..errors import ConflictError, ConstraintViolationError, InvalidArgumentError, NotFoundError
from .model import Dependency
from .store import BoardStore, BoardTx


def iter_downstream(view: BoardTx, task_id: str) -> Iterator[str]:
    """Yield every task reachable from *task_id* along ``blocking -> blocked`` edges.

    Breadth-first, each task at most once, *task_id* itself excluded.
    """
    visited: set[str] = {task_id}
    queue: deque[str] = deque([task_id])
    while queue:
        current = queue.popleft()
        for dep in view.outgoing(current):
            nxt = dep.blocked_task_id
            if nxt in visited:
                continue
            visited.add(nxt)
            queue.append(nxt)
            yield nxt


class DependencyGraph:
    """Insert, remove, and traverse dependency edges.

    Parameters
    ----------
    store:
        Board store holding tasks and edges.
    cycle_check:
        ``"direct"`` rejects only the immediate reverse edge.
        ``"transitive"`` additionally rejects an edge whose blocking task is
        already reachable from its blocked task.
    """

    def __init__(self, store: BoardStore, cycle_check: str = CYCLE_CHECK_DIRECT) -> None:
        if cycle_check not in CYCLE_CHECK_MODES:
            raise ValueError(f"Unknown cycle_check mode: {cycle_check!r}")
        self.store = store
        self.cycle_check = cycle_check

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_edge(self, blocking_task_id: str, blocked_task_id: str) -> Dependency:
        """Create the edge ``blocking_task_id -> blocked_task_id``.

        Checks run in a fixed order and all of them before anything is written.
        """
        with self.store.transaction() as tx:
            blocking = tx.get_task(blocking_task_id)
            blocked = tx.get_task(blocked_task_id)
            if blocked is None:
                raise NotFoundError(f"Blocked task {blocked_task_id} not found")
            if blocking is None:
                raise NotFoundError(f"Blocking task {blocking_task_id} not found")
            if blocking_task_id == blocked_task_id:
                raise InvalidArgumentError("A task cannot depend on itself")
            if blocking.project_id != blocked.project_id:
                raise InvalidArgumentError("Dependencies must be within the same project")
            if tx.find_dependency(blocking_task_id, blocked_task_id) is not None:
                raise ConflictError("This dependency already exists")
            if tx.find_dependency(blocked_task_id, blocking_task_id) is not None:
                raise ConstraintViolationError(
                    "Cannot create dependency: would create a circular dependency"
                )
            if self.cycle_check == CYCLE_CHECK_TRANSITIVE and self._reachable(tx, blocked_task_id, blocking_task_id):
                raise ConstraintViolationError(
                    f"Cannot create dependency: {blocking_task_id} is already downstream of {blocked_task_id}"
                )

            dep = tx.add_dependency(
                Dependency(
                    blocking_task_id=blocking_task_id,
                    blocked_task_id=blocked_task_id,
                    project_id=blocked.project_id,
                    blocking_title=blocking.title,
                    blocked_title=blocked.title,
                )
            )

        logger.info("Added dependency {}: {} blocks {}", dep.id, blocking_task_id, blocked_task_id)
        return dep

    def remove_edge(self, edge_id: str) -> Dependency:
        with self.store.transaction() as tx:
            dep = tx.remove_dependency(edge_id)
            if dep is None:
                raise NotFoundError("Dependency not found")
        logger.info("Removed dependency {}: {} blocks {}", dep.id, dep.blocking_task_id, dep.blocked_task_id)
        return dep

    @staticmethod
    def remove_task_edges(tx: BoardTx, task_id: str) -> list[Dependency]:
        """Drop every edge touching *task_id* inside an open transaction."""
        touching = {d.id: d for d in tx.outgoing(task_id) + tx.incoming(task_id)}
        for dep_id in touching:
            tx.remove_dependency(dep_id)
        return list(touching.values())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def downstream(self, task_id: str, view: Optional[BoardTx] = None) -> Iterator[str]:
        """Lazily yield tasks transitively blocked by *task_id*.

        Walks *view* when given, otherwise a fresh snapshot of the store.
        """
        if view is None:
            view = self.store.read_snapshot()
        return iter_downstream(view, task_id)

    def dependents(self, task_id: str) -> list[Dependency]:
        """Outgoing edges: tasks that *task_id* blocks."""
        return self.store.read_snapshot().outgoing(task_id)

    def dependencies(self, task_id: str) -> list[Dependency]:
        """Incoming edges: tasks blocking *task_id*."""
        return self.store.read_snapshot().incoming(task_id)

    def execution_order(self, project_id: str) -> list[list[str]]:
        """Topological sort of a project's tasks into batches (Kahn's algorithm).

        Tasks in the same batch have no edges between them.  Tasks stuck on a
        cycle never reach in-degree zero and are left out.
        """
        view = self.store.read_snapshot()
        tasks = {t.id: t for t in view.list_tasks(project_id)}
        in_degree: dict[str, int] = {tid: 0 for tid in tasks}
        adj: dict[str, list[str]] = defaultdict(list)
        for dep in view.list_dependencies(project_id):
            if dep.blocking_task_id in tasks and dep.blocked_task_id in tasks:
                adj[dep.blocking_task_id].append(dep.blocked_task_id)
                in_degree[dep.blocked_task_id] += 1

        def _key(tid: str) -> tuple:
            due = tasks[tid].due_date
            return (due is None, due.toordinal() if due else 0, tasks[tid].created_at)

        batches: list[list[str]] = []
        queue = sorted((tid for tid, deg in in_degree.items() if deg == 0), key=_key)
        while queue:
            batches.append(list(queue))
            next_queue: list[str] = []
            for tid in queue:
                for neighbor in adj.get(tid, []):
                    in_degree[neighbor] -= 1
                    if in_degree[neighbor] == 0:
                        next_queue.append(neighbor)
            queue = sorted(next_queue, key=_key)

        remaining = [tid for tid, deg in in_degree.items() if deg > 0]
        if remaining:
            logger.warning("Dependency cycle detected among tasks: {}", remaining)
        return batches

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reachable(view: BoardTx, source_id: str, target_id: str) -> bool:
        return any(tid == target_id for tid in iter_downstream(view, source_id))
