"""Transactional board store for statuses, tasks, and dependency edges.

All writes go through :meth:`BoardStore.transaction`, which yields a
:class:`BoardTx` and persists it only if the ``with`` block exits normally
and something changed.  An exception inside the block discards every change,
which is what makes a multi-task timeline cascade all-or-nothing.

Two implementations are provided:

* :class:`FileBoardStore` keeps one YAML document (``board.yaml``) inside the
  state directory and serializes transactions with a ``filelock`` lock plus
  a process-local ``RLock``.
* :class:`MemoryBoardStore` keeps the board in memory; useful for embedding
  and tests.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Iterator, Optional

from filelock import FileLock

from ..constants import BOARD_FILE, BOARD_LOCK_FILE, BOARD_SCHEMA_VERSION, DEFAULT_LOCK_TIMEOUT_SECONDS
from ..io_utils import _atomic_write_yaml, _load_yaml_with_error
from .model import Dependency, Task, TaskStatus


# ---------------------------------------------------------------------------
# In-memory view
# ---------------------------------------------------------------------------

class BoardTx:
    """In-memory view over one board state.

    Used both as a write transaction (mutations flip :attr:`dirty`) and as a
    detached read snapshot returned by :meth:`BoardStore.read_snapshot`.
    """

    def __init__(
        self,
        statuses: list[TaskStatus],
        tasks: list[Task],
        dependencies: list[Dependency],
    ) -> None:
        self.dirty = False
        self._statuses: dict[str, TaskStatus] = {s.id: s for s in statuses}
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._dependencies: dict[str, Dependency] = {d.id: d for d in dependencies}
        self._reindex()

    def _reindex(self) -> None:
        self._outgoing: dict[str, list[str]] = defaultdict(list)
        self._incoming: dict[str, list[str]] = defaultdict(list)
        for dep in self._dependencies.values():
            self._outgoing[dep.blocking_task_id].append(dep.id)
            self._incoming[dep.blocked_task_id].append(dep.id)

    # -- statuses -----------------------------------------------------------

    def get_status(self, status_id: Optional[str]) -> Optional[TaskStatus]:
        if status_id is None:
            return None
        return self._statuses.get(status_id)

    def list_statuses(self, project_id: Optional[str] = None) -> list[TaskStatus]:
        out = [s for s in self._statuses.values() if project_id is None or s.project_id == project_id]
        out.sort(key=lambda s: s.sort_order)
        return out

    def add_status(self, status: TaskStatus) -> TaskStatus:
        if status.id in self._statuses:
            raise ValueError(f"Status {status.id} already exists")
        self._statuses[status.id] = status
        self.dirty = True
        return status

    # -- tasks --------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def list_tasks(self, project_id: Optional[str] = None) -> list[Task]:
        return [t for t in self._tasks.values() if project_id is None or t.project_id == project_id]

    def subtasks(self, parent_task_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.parent_task_id == parent_task_id]

    def add_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._tasks[task.id] = task
        self.dirty = True
        return task

    def update_dates(
        self,
        task_id: str,
        start_date: Optional[date],
        due_date: Optional[date],
    ) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        task.set_dates(start_date, due_date)
        self.dirty = True
        return task

    def descendants(self, task_id: str) -> list[str]:
        """Ids of every subtask below *task_id*, deepest first."""
        found: list[str] = []
        seen: set[str] = {task_id}
        pending = [task_id]
        while pending:
            current = pending.pop()
            for child in self.subtasks(current):
                if child.id in seen:
                    continue
                seen.add(child.id)
                found.append(child.id)
                pending.append(child.id)
        found.reverse()
        return found

    def remove_task(self, task_id: str) -> Optional[Task]:
        """Physically remove one task.  Edges and subtasks are left to the caller."""
        task = self._tasks.pop(task_id, None)
        if task is None:
            return None
        self.dirty = True
        return task

    # -- dependencies -------------------------------------------------------

    def get_dependency(self, dependency_id: str) -> Optional[Dependency]:
        return self._dependencies.get(dependency_id)

    def find_dependency(self, blocking_task_id: str, blocked_task_id: str) -> Optional[Dependency]:
        for dep_id in self._outgoing.get(blocking_task_id, []):
            dep = self._dependencies[dep_id]
            if dep.blocked_task_id == blocked_task_id:
                return dep
        return None

    def outgoing(self, task_id: str) -> list[Dependency]:
        """Edges where *task_id* is the blocking side."""
        return [self._dependencies[d] for d in self._outgoing.get(task_id, [])]

    def incoming(self, task_id: str) -> list[Dependency]:
        """Edges where *task_id* is the blocked side."""
        return [self._dependencies[d] for d in self._incoming.get(task_id, [])]

    def list_dependencies(self, project_id: Optional[str] = None) -> list[Dependency]:
        return [d for d in self._dependencies.values() if project_id is None or d.project_id == project_id]

    def add_dependency(self, dependency: Dependency) -> Dependency:
        if dependency.id in self._dependencies:
            raise ValueError(f"Dependency {dependency.id} already exists")
        self._dependencies[dependency.id] = dependency
        self._outgoing[dependency.blocking_task_id].append(dependency.id)
        self._incoming[dependency.blocked_task_id].append(dependency.id)
        self.dirty = True
        return dependency

    def remove_dependency(self, dependency_id: str) -> Optional[Dependency]:
        dep = self._dependencies.pop(dependency_id, None)
        if dep is None:
            return None
        self._reindex()
        self.dirty = True
        return dep

    # -- serialization ------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": BOARD_SCHEMA_VERSION,
            "statuses": [s.to_dict() for s in self._statuses.values()],
            "tasks": [t.to_dict() for t in self._tasks.values()],
            "dependencies": [d.to_dict() for d in self._dependencies.values()],
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BoardTx":
        def _items(key: str) -> list[dict[str, Any]]:
            raw = data.get(key)
            if not isinstance(raw, list):
                return []
            return [item for item in raw if isinstance(item, dict)]

        return cls(
            statuses=[TaskStatus.from_dict(d) for d in _items("statuses")],
            tasks=[Task.from_dict(d) for d in _items("tasks")],
            dependencies=[Dependency.from_dict(d) for d in _items("dependencies")],
        )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class BoardStore(ABC):
    @abstractmethod
    def transaction(self) -> Any:
        """Context manager yielding a :class:`BoardTx`; commits on clean exit."""
        raise NotImplementedError

    @abstractmethod
    def read_snapshot(self) -> BoardTx:
        """Return a detached copy of the board; no lock held after return."""
        raise NotImplementedError


class FileBoardStore(BoardStore):
    """Thread- and process-safe, file-backed :class:`BoardStore`.

    Parameters
    ----------
    state_dir:
        Path to the ``.timeline_engine/`` directory.
    lock_timeout:
        Seconds to wait for the file lock before ``filelock.Timeout`` is raised.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / BOARD_FILE
        self._lock = FileLock(str(state_dir / BOARD_LOCK_FILE), timeout=lock_timeout)
        self._thread_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._store_path

    def _load(self) -> BoardTx:
        data, err = _load_yaml_with_error(self._store_path, {})
        if err:
            # Refuse to continue rather than overwrite a corrupt board.
            raise RuntimeError(f"Cannot load board: {err}")
        return BoardTx.from_payload(data)

    def _save(self, tx: BoardTx) -> None:
        _atomic_write_yaml(self._store_path, tx.to_payload())

    @contextmanager
    def transaction(self) -> Iterator[BoardTx]:
        """Acquire the lock, load the board, yield a transaction, and save on exit.

        Usage::

            with store.transaction() as tx:
                tx.update_dates("task-abc123", start, due)
                # saved on exit; discarded if the block raises
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            with self._lock:
                tx = self._load()
                yield tx
                if tx.dirty:
                    self._save(tx)

    def read_snapshot(self) -> BoardTx:
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            with self._lock:
                return self._load()


class MemoryBoardStore(BoardStore):
    """Process-local :class:`BoardStore`; each transaction works on a deep copy."""

    def __init__(self) -> None:
        self._payload: dict[str, Any] = BoardTx([], [], []).to_payload()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[BoardTx]:
        with self._lock:
            tx = BoardTx.from_payload(copy.deepcopy(self._payload))
            yield tx
            if tx.dirty:
                self._payload = tx.to_payload()

    def read_snapshot(self) -> BoardTx:
        with self._lock:
            return BoardTx.from_payload(copy.deepcopy(self._payload))
