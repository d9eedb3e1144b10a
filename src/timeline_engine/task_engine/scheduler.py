"""Timeline auto-scheduling.

A timeline update runs in two explicit phases:

1. :meth:`TimelineScheduler.snapshot` reads the board once, resolves the new
   dates, computes the day-delta from the due-date change and, when
   auto-scheduling, collects every downstream task with its current dates.
   Nothing is locked after this returns.
2. :meth:`TimelineScheduler.commit` opens a single store transaction, writes
   the primary task and shifts every collected task, then publishes one
   change event per written task.

Between the two phases other requests may add or remove edges or move
downstream tasks.  In ``snapshot`` consistency mode the commit acts on what
the snapshot saw; in ``revalidate`` mode it re-walks the graph inside the
transaction and refuses with :class:`ConflictError` when the snapshot is stale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Mapping, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import CONSISTENCY_MODES, CONSISTENCY_REVALIDATE, CONSISTENCY_SNAPSHOT
from ..errors import ConflictError, InternalError, InvalidArgumentError, NotFoundError
from .graph import DependencyGraph
from .model import format_date, parse_date
from .notifier import ChangeNotifier, NullNotifier, TaskChangeEvent
from .store import BoardStore, BoardTx


# ---------------------------------------------------------------------------
# Request / result models
# ---------------------------------------------------------------------------

class TimelineUpdate(BaseModel):
    """Requested date change.

    A field left out keeps the task's current value; a field given as
    ``None`` clears it.  ``end_date`` maps onto the task's due date.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    auto_schedule: bool = Field(default=False, alias="autoSchedule")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> Optional[date]:
        # Timestamps keep only their calendar date; only None clears.
        if value is None:
            return None
        if value == "":
            raise ValueError("Invalid date: ''")
        return parse_date(value)

    @classmethod
    def parse(cls, payload: Union["TimelineUpdate", Mapping[str, Any]]) -> "TimelineUpdate":
        if isinstance(payload, cls):
            return payload
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as exc:
            raise InvalidArgumentError(f"Invalid timeline update: {exc.errors()[0]['msg']}") from exc

    def resolve(self, old_start: Optional[date], old_due: Optional[date]) -> tuple[Optional[date], Optional[date]]:
        new_start = self.start_date if "start_date" in self.model_fields_set else old_start
        new_due = self.end_date if "end_date" in self.model_fields_set else old_due
        return new_start, new_due


@dataclass(frozen=True)
class TaskDateChange:
    id: str
    title: str
    old_start: Optional[date]
    old_end: Optional[date]
    new_start: Optional[date]
    new_end: Optional[date]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "old_start": format_date(self.old_start),
            "old_end": format_date(self.old_end),
            "new_start": format_date(self.new_start),
            "new_end": format_date(self.new_end),
        }


@dataclass(frozen=True)
class TimelinePlan:
    """Output of the snapshot phase; input of the commit phase."""

    project_id: str
    primary: TaskDateChange
    day_delta: int
    auto_schedule: bool
    cascade: tuple[TaskDateChange, ...] = ()


@dataclass
class TimelineResult:
    primary: TaskDateChange
    cascaded: list[TaskDateChange] = field(default_factory=list)
    day_delta: int = 0

    def changes(self) -> list[TaskDateChange]:
        return [self.primary, *self.cascaded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary.to_dict(),
            "cascaded": [c.to_dict() for c in self.cascaded],
            "day_delta": self.day_delta,
            "cascade_count": len(self.cascaded),
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def compute_day_delta(old_due: Optional[date], new_due: Optional[date]) -> int:
    """Signed calendar days the due date moved; 0 unless both dates are set."""
    if old_due is None or new_due is None:
        return 0
    return (new_due - old_due).days


def shift_date(value: Optional[date], days: int) -> Optional[date]:
    if value is None:
        return None
    return value + timedelta(days=days)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class TimelineScheduler:
    def __init__(
        self,
        store: BoardStore,
        graph: DependencyGraph,
        notifier: Optional[ChangeNotifier] = None,
        consistency: str = CONSISTENCY_SNAPSHOT,
    ) -> None:
        if consistency not in CONSISTENCY_MODES:
            raise ValueError(f"Unknown consistency mode: {consistency!r}")
        self.store = store
        self.graph = graph
        self.notifier = notifier or NullNotifier()
        self.consistency = consistency

    def update_timeline(
        self,
        task_id: str,
        project_id: str,
        update: Union[TimelineUpdate, Mapping[str, Any]],
    ) -> TimelineResult:
        plan = self.snapshot(task_id, project_id, update)
        return self.commit(plan)

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def snapshot(
        self,
        task_id: str,
        project_id: str,
        update: Union[TimelineUpdate, Mapping[str, Any]],
    ) -> TimelinePlan:
        request = TimelineUpdate.parse(update)
        view = self.store.read_snapshot()
        task = view.get_task(task_id)
        if task is None or task.project_id != project_id:
            raise NotFoundError("Task not found")

        new_start, new_due = request.resolve(task.start_date, task.due_date)
        day_delta = compute_day_delta(task.due_date, new_due)
        primary = TaskDateChange(
            id=task.id,
            title=task.title,
            old_start=task.start_date,
            old_end=task.due_date,
            new_start=new_start,
            new_end=new_due,
        )

        cascade: list[TaskDateChange] = []
        if request.auto_schedule and day_delta != 0:
            for downstream_id in self.graph.downstream(task_id, view=view):
                other = view.get_task(downstream_id)
                if other is None:
                    continue
                cascade.append(
                    TaskDateChange(
                        id=other.id,
                        title=other.title,
                        old_start=other.start_date,
                        old_end=other.due_date,
                        new_start=shift_date(other.start_date, day_delta),
                        new_end=shift_date(other.due_date, day_delta),
                    )
                )
            logger.debug("Timeline snapshot for {}: delta={} downstream={}", task_id, day_delta, len(cascade))

        return TimelinePlan(
            project_id=project_id,
            primary=primary,
            day_delta=day_delta,
            auto_schedule=request.auto_schedule,
            cascade=tuple(cascade),
        )

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def commit(self, plan: TimelinePlan) -> TimelineResult:
        primary = plan.primary
        with self.store.transaction() as tx:
            task = tx.get_task(primary.id)
            if task is None or task.project_id != plan.project_id:
                raise NotFoundError("Task not found")
            if self.consistency == CONSISTENCY_REVALIDATE:
                self._revalidate(tx, plan)

            tx.update_dates(primary.id, primary.new_start, primary.new_end)
            for change in plan.cascade:
                if tx.update_dates(change.id, change.new_start, change.new_end) is None:
                    raise InternalError(f"Task {change.id} disappeared before the cascade committed")

        result = TimelineResult(primary=primary, cascaded=list(plan.cascade), day_delta=plan.day_delta)
        logger.info(
            "Committed timeline for {} (delta={}, cascaded={})",
            primary.id,
            plan.day_delta,
            len(result.cascaded),
        )
        self._publish(plan.project_id, result)
        return result

    def _revalidate(self, tx: BoardTx, plan: TimelinePlan) -> None:
        expected = [c.id for c in plan.cascade]
        if plan.auto_schedule and plan.day_delta != 0:
            current = list(self.graph.downstream(plan.primary.id, view=tx))
        else:
            current = []
        if sorted(current) != sorted(expected):
            raise ConflictError("Dependency graph changed since the timeline snapshot was taken")
        for change in plan.cascade:
            task = tx.get_task(change.id)
            if task is None or (task.start_date, task.due_date) != (change.old_start, change.old_end):
                raise ConflictError(f"Task {change.id} changed since the timeline snapshot was taken")

    def _publish(self, project_id: str, result: TimelineResult) -> None:
        for change in result.changes():
            event = TaskChangeEvent(
                project_id=project_id,
                task_id=change.id,
                start_date=change.new_start,
                due_date=change.new_end,
            )
            try:
                self.notifier.publish(event)
            except Exception:
                logger.exception("Failed to publish timeline change for {}", change.id)
