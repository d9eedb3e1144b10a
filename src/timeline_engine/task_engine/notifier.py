"""Post-commit change notifications.

The scheduler only knows the :class:`ChangeNotifier` port.  Adapters decide
where events go: an in-memory list, a JSONL event log, or any real-time
fan-out a host application wires in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..io_utils import _append_jsonl, _read_jsonl_tail
from .model import format_date


@dataclass(frozen=True)
class TaskChangeEvent:
    """One mutated task: ``{project_id, task_id, changes: {start_date, due_date}}``."""

    project_id: str
    task_id: str
    start_date: Optional[date]
    due_date: Optional[date]
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "task_id": self.task_id,
            "changes": {
                "start_date": format_date(self.start_date),
                "due_date": format_date(self.due_date),
            },
        }


class ChangeNotifier(ABC):
    @abstractmethod
    def publish(self, event: TaskChangeEvent) -> None:
        raise NotImplementedError


class NullNotifier(ChangeNotifier):
    def publish(self, event: TaskChangeEvent) -> None:
        return None


class RecordingNotifier(ChangeNotifier):
    """Keeps every published event in :attr:`events`."""

    def __init__(self) -> None:
        self.events: list[TaskChangeEvent] = []

    def publish(self, event: TaskChangeEvent) -> None:
        self.events.append(event)

    def task_ids(self) -> list[str]:
        return [e.task_id for e in self.events]


class EventLogNotifier(ChangeNotifier):
    """Append events as JSON lines, one per mutated task."""

    def __init__(self, events_path: Path) -> None:
        self._events_path = events_path

    @property
    def path(self) -> Path:
        return self._events_path

    def publish(self, event: TaskChangeEvent) -> None:
        payload = {"ts": event.ts, "type": "task.timeline_changed", **event.to_dict()}
        _append_jsonl(self._events_path, payload)

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        return _read_jsonl_tail(self._events_path, limit)
