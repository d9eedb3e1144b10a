"""Task engine: the entry point for dependency and timeline operations.

Wraps :class:`DependencyGraph`, :class:`TimelineScheduler` and the progress
helpers behind one object.  Engine errors pass through untouched; anything
unexpected coming out of the store is converted into :class:`InternalError`.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from loguru import logger

from ..config import (
    get_consistency_mode,
    get_cycle_check_mode,
    get_event_log_enabled,
    get_lock_timeout,
    get_workday_hours,
    load_engine_config,
)
from ..constants import (
    ARTIFACTS_DIR,
    CONSISTENCY_SNAPSHOT,
    CYCLE_CHECK_DIRECT,
    DEFAULT_STATUSES,
    DEFAULT_WORKDAY_HOURS,
    EVENTS_FILE,
    STATE_DIR_NAME,
)
from ..errors import InternalError, InvalidArgumentError, NotFoundError, TimelineEngineError
from .graph import DependencyGraph
from .model import Dependency, Task, TaskStatus, parse_date
from .notifier import ChangeNotifier, EventLogNotifier
from .progress import DayResourceLoad, compute_progress, daily_resource_load, is_overdue, order_for_timeline
from .scheduler import TimelineResult, TimelineScheduler, TimelineUpdate
from .store import BoardStore, BoardTx, FileBoardStore


@contextmanager
def _operation(action: str) -> Iterator[None]:
    try:
        yield
    except TimelineEngineError:
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to {}", action)
        raise InternalError(f"Failed to {action}") from exc


def _date_arg(name: str, raw: Any) -> Optional[date]:
    try:
        return parse_date(raw)
    except ValueError as exc:
        raise InvalidArgumentError(f"'{name}': {exc}") from exc


class TaskEngine:
    """Dependency graph, timeline scheduling and progress for a board.

    Parameters
    ----------
    store:
        Board store holding statuses, tasks and edges.
    notifier:
        Receives one event per task written by :meth:`update_timeline`.
    cycle_check / consistency:
        See :class:`DependencyGraph` and :class:`TimelineScheduler`.
    """

    def __init__(
        self,
        store: BoardStore,
        notifier: Optional[ChangeNotifier] = None,
        *,
        cycle_check: str = CYCLE_CHECK_DIRECT,
        consistency: str = CONSISTENCY_SNAPSHOT,
        workday_hours: float = DEFAULT_WORKDAY_HOURS,
    ) -> None:
        self.store = store
        self.graph = DependencyGraph(store, cycle_check=cycle_check)
        self.scheduler = TimelineScheduler(store, self.graph, notifier, consistency=consistency)
        self.workday_hours = workday_hours

    @classmethod
    def for_project_dir(cls, project_dir: Path, notifier: Optional[ChangeNotifier] = None) -> "TaskEngine":
        """Build a file-backed engine from ``<project_dir>/.timeline_engine/``."""
        config, err = load_engine_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable engine config: {}", err)
        state_dir = project_dir.resolve() / STATE_DIR_NAME
        store = FileBoardStore(state_dir, lock_timeout=get_lock_timeout(config))
        if notifier is None and get_event_log_enabled(config):
            notifier = EventLogNotifier(state_dir / ARTIFACTS_DIR / EVENTS_FILE)
        return cls(
            store,
            notifier,
            cycle_check=get_cycle_check_mode(config),
            consistency=get_consistency_mode(config),
            workday_hours=get_workday_hours(config),
        )

    @property
    def notifier(self) -> ChangeNotifier:
        return self.scheduler.notifier

    # ------------------------------------------------------------------
    # Seeding / lookups
    # ------------------------------------------------------------------

    def create_status(
        self,
        project_id: str,
        name: str,
        *,
        is_final: bool = False,
        sort_order: Optional[int] = None,
    ) -> TaskStatus:
        if not name.strip():
            raise InvalidArgumentError("Status name is required")
        with _operation("create status"):
            with self.store.transaction() as tx:
                existing = tx.list_statuses(project_id)
                if sort_order is None:
                    sort_order = max((s.sort_order for s in existing), default=-1) + 1
                return tx.add_status(
                    TaskStatus(project_id=project_id, name=name.strip(), is_final=is_final, sort_order=sort_order)
                )

    def create_project_statuses(self, project_id: str) -> list[TaskStatus]:
        """Seed the default To Do / In Progress / Done columns if the project has none."""
        with _operation("create statuses"):
            with self.store.transaction() as tx:
                existing = tx.list_statuses(project_id)
                if existing:
                    return existing
                return [tx.add_status(TaskStatus(project_id=project_id, **defaults)) for defaults in DEFAULT_STATUSES]

    def list_statuses(self, project_id: str) -> list[TaskStatus]:
        with _operation("list statuses"):
            return self.store.read_snapshot().list_statuses(project_id)

    def create_task(
        self,
        project_id: str,
        title: str,
        *,
        status_id: Optional[str] = None,
        start_date: Any = None,
        due_date: Any = None,
        estimated_hours: Optional[float] = None,
        is_milestone: bool = False,
        parent_task_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> Task:
        if not title.strip():
            raise InvalidArgumentError("Task title is required")
        if estimated_hours is not None and estimated_hours < 0:
            raise InvalidArgumentError("'estimated_hours' must be non-negative")
        task = Task(
            project_id=project_id,
            title=title.strip(),
            status_id=status_id,
            start_date=_date_arg("start_date", start_date),
            due_date=_date_arg("due_date", due_date),
            estimated_hours=estimated_hours,
            is_milestone=is_milestone,
            parent_task_id=parent_task_id,
            assignee_id=assignee_id,
        )
        with _operation("create task"):
            with self.store.transaction() as tx:
                if status_id is not None:
                    status = tx.get_status(status_id)
                    if status is None or status.project_id != project_id:
                        raise InvalidArgumentError("Invalid status for this project")
                if parent_task_id is not None:
                    parent = tx.get_task(parent_task_id)
                    if parent is None:
                        raise NotFoundError("Parent task not found")
                    if parent.project_id != project_id:
                        raise InvalidArgumentError("Subtasks must be within the same project")
                tx.add_task(task)
        logger.info("Created task {}: {}", task.id, task.title)
        return task

    def get_task(self, task_id: str) -> Task:
        with _operation("get task"):
            task = self.store.read_snapshot().get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def list_tasks(self, project_id: str) -> list[Task]:
        with _operation("list tasks"):
            return self.store.read_snapshot().list_tasks(project_id)

    def delete_task(self, task_id: str) -> list[Dependency]:
        """Delete a task, all of its subtasks, and every edge touching them.

        Everything happens in one transaction.  Returns the removed edges.
        """
        with _operation("delete task"):
            with self.store.transaction() as tx:
                if tx.get_task(task_id) is None:
                    raise NotFoundError("Task not found")
                doomed = [*tx.descendants(task_id), task_id]
                removed: list[Dependency] = []
                for tid in doomed:
                    removed.extend(self.graph.remove_task_edges(tx, tid))
                    tx.remove_task(tid)
        logger.info(
            "Deleted task {} with {} subtasks and {} dependencies",
            task_id,
            len(doomed) - 1,
            len(removed),
        )
        return removed

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, blocked_task_id: str, blocking_task_id: str) -> Dependency:
        """Record that *blocking_task_id* must conclude before *blocked_task_id*."""
        with _operation("add dependency"):
            return self.graph.add_edge(blocking_task_id, blocked_task_id)

    def remove_dependency(self, dependency_id: str) -> Dependency:
        with _operation("remove dependency"):
            return self.graph.remove_edge(dependency_id)

    def downstream(self, task_id: str) -> list[str]:
        with _operation("walk dependencies"):
            return list(self.graph.downstream(task_id))

    def dependents(self, task_id: str) -> list[Dependency]:
        with _operation("list dependents"):
            return self.graph.dependents(task_id)

    def dependencies(self, task_id: str) -> list[Dependency]:
        with _operation("list dependencies"):
            return self.graph.dependencies(task_id)

    def execution_order(self, project_id: str) -> list[list[str]]:
        with _operation("order tasks"):
            return self.graph.execution_order(project_id)

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def update_timeline(
        self,
        task_id: str,
        project_id: str,
        update: Union[TimelineUpdate, Mapping[str, Any]],
    ) -> TimelineResult:
        with _operation("update timeline"):
            return self.scheduler.update_timeline(task_id, project_id, update)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    @staticmethod
    def _progress(view: BoardTx, task: Task) -> int:
        subtasks = view.subtasks(task.id)
        return compute_progress(
            view.get_status(task.status_id),
            [view.get_status(s.status_id) for s in subtasks],
        )

    def compute_progress(self, task_id: str) -> int:
        with _operation("compute progress"):
            view = self.store.read_snapshot()
        task = view.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return self._progress(view, task)

    def overdue_tasks(self, project_id: str, today: Optional[date] = None) -> list[Task]:
        today = today or date.today()
        with _operation("list overdue tasks"):
            view = self.store.read_snapshot()
        return [
            t for t in view.list_tasks(project_id)
            if is_overdue(t, view.get_status(t.status_id), today)
        ]

    def timeline(self, project_id: str, today: Optional[date] = None) -> list[dict[str, Any]]:
        """Dated tasks in timeline order, each with derived progress and overdue flag."""
        today = today or date.today()
        with _operation("build timeline"):
            view = self.store.read_snapshot()
        ordered = order_for_timeline(
            view.list_tasks(project_id),
            lambda t: view.get_status(t.status_id),
            today,
        )
        rows: list[dict[str, Any]] = []
        for task in ordered:
            row = task.to_dict()
            row["progress_percentage"] = self._progress(view, task)
            row["is_overdue"] = is_overdue(task, view.get_status(task.status_id), today)
            row["blocked_by"] = [d.blocking_task_id for d in view.incoming(task.id)]
            rows.append(row)
        return rows

    def resource_load(self, project_id: str) -> list[DayResourceLoad]:
        with _operation("compute resource load"):
            view = self.store.read_snapshot()
        return daily_resource_load(view.list_tasks(project_id), workday_hours=self.workday_hours)
