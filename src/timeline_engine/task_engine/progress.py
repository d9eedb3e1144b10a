"""Derived, read-only task metrics: progress, overdue state, timeline order, resource load.

Everything here is a pure function of the records passed in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Iterable, Optional, Sequence

from ..constants import DEFAULT_WORKDAY_HOURS
from .model import Task, TaskStatus

_IN_PROGRESS_NAMES = frozenset({"inprogress", "doing", "started", "active"})
_IN_REVIEW_NAMES = frozenset({"inreview", "review", "testing", "qa"})
_DONE_NAMES = frozenset({"done", "completed", "closed", "finished"})


def normalize_status_name(name: str) -> str:
    """``"In-Progress "`` -> ``"inprogress"``."""
    return "".join(ch for ch in name.lower() if not ch.isspace() and ch not in "-_")


def _percent(part: int, whole: int) -> int:
    # Integer half-up rounding of 100 * part / whole.
    return (200 * part + whole) // (2 * whole)


def compute_progress(
    status: Optional[TaskStatus],
    subtask_statuses: Sequence[Optional[TaskStatus]] = (),
) -> int:
    """Completion percentage (0-100) for a task.

    With subtasks, the share of subtasks in a final status.  Otherwise 100
    for a final status, else a bucket guessed from the status name.
    """
    if subtask_statuses:
        final = sum(1 for s in subtask_statuses if s is not None and s.is_final)
        return _percent(final, len(subtask_statuses))
    if status is None:
        return 0
    if status.is_final:
        return 100
    key = normalize_status_name(status.name)
    if key in _IN_PROGRESS_NAMES:
        return 50
    if key in _IN_REVIEW_NAMES:
        return 90
    if key in _DONE_NAMES:
        return 100
    return 0


def is_overdue(task: Task, status: Optional[TaskStatus], today: date) -> bool:
    if task.due_date is None:
        return False
    if status is not None and status.is_final:
        return False
    return task.due_date < today


def timeline_sort_key(task: Task, status: Optional[TaskStatus], today: date) -> tuple:
    """Overdue first, then current, then future; ties by due date, undated last."""
    if is_overdue(task, status, today):
        bucket = 0
    elif (task.start_date or today) > today:
        bucket = 2
    else:
        bucket = 1
    due = task.due_date.toordinal() if task.due_date else 0
    return (bucket, task.due_date is None, due)


def order_for_timeline(
    tasks: Iterable[Task],
    status_of: Callable[[Task], Optional[TaskStatus]],
    today: date,
) -> list[Task]:
    """Dated tasks sorted for the timeline view; undated tasks are dropped."""
    dated = [t for t in tasks if t.start_date or t.due_date]
    return sorted(dated, key=lambda t: timeline_sort_key(t, status_of(t), today))


# ---------------------------------------------------------------------------
# Resource load
# ---------------------------------------------------------------------------

@dataclass
class DayResourceLoad:
    day: date
    assignee_id: str
    total_estimated_hours: float = 0.0
    is_overloaded: bool = False
    task_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "assignee_id": self.assignee_id,
            "total_estimated_hours": round(self.total_estimated_hours, 2),
            "is_overloaded": self.is_overloaded,
            "task_ids": list(self.task_ids),
        }


def _scheduled_days(task: Task) -> list[date]:
    start = task.start_date or task.due_date
    end = task.due_date or task.start_date
    if start is None or end is None:
        return []
    if end < start:
        start, end = end, start
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def daily_resource_load(
    tasks: Iterable[Task],
    workday_hours: float = DEFAULT_WORKDAY_HOURS,
) -> list[DayResourceLoad]:
    """Per assignee and day, the estimated hours scheduled.

    Each task's ``estimated_hours`` is spread evenly over its scheduled days.
    Tasks without an assignee, an estimate, or any date are ignored.
    """
    loads: dict[tuple[str, date], DayResourceLoad] = {}
    for task in tasks:
        if not task.assignee_id or not task.estimated_hours:
            continue
        days = _scheduled_days(task)
        if not days:
            continue
        share = task.estimated_hours / len(days)
        for day in days:
            key = (task.assignee_id, day)
            load = loads.get(key)
            if load is None:
                load = loads[key] = DayResourceLoad(day=day, assignee_id=task.assignee_id)
            load.total_estimated_hours += share
            load.task_ids.append(task.id)

    for load in loads.values():
        load.is_overloaded = load.total_estimated_hours > workday_hours
    return sorted(loads.values(), key=lambda l: (l.assignee_id, l.day))
