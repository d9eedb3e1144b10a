"""Records for the scheduling engine: tasks, statuses, and dependency edges.

Dates are calendar dates (:class:`datetime.date`) with no time-of-day and
are persisted as ISO ``YYYY-MM-DD`` strings.  ``progress_percentage`` is not
a field: it is derived on read by :mod:`.progress`.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str) -> str:
    """Short human-friendly id: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def parse_date(raw: Any) -> Optional[date]:
    """Coerce *raw* into a calendar date.

    Accepts ``None``, :class:`date`, :class:`datetime` (time is dropped) and
    ISO strings (``YYYY-MM-DD`` or a full ISO timestamp).  Raises
    :class:`ValueError` for anything else.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            raise ValueError(f"Invalid date: {raw!r}") from None
    raise ValueError(f"Invalid date: {raw!r}")


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class TaskStatus:
    """A board column.  ``is_final`` marks statuses that count as complete."""

    id: str = field(default_factory=lambda: _generate_id("status"))
    project_id: str = ""
    name: str = ""
    is_final: bool = False
    sort_order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskStatus":
        return cls(
            id=str(data.get("id") or _generate_id("status")),
            project_id=str(data.get("project_id") or ""),
            name=str(data.get("name") or ""),
            is_final=bool(data.get("is_final", False)),
            sort_order=int(data.get("sort_order") or 0),
        )


@dataclass
class Task:
    """A schedulable task within one project."""

    # Identity
    id: str = field(default_factory=lambda: _generate_id("task"))
    project_id: str = ""
    title: str = ""

    # Schedule
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = None
    is_milestone: bool = False

    # Board
    status_id: Optional[str] = None
    assignee_id: Optional[str] = None
    parent_task_id: Optional[str] = None

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_date"] = format_date(self.start_date)
        data["due_date"] = format_date(self.due_date)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        hours = data.get("estimated_hours")
        return cls(
            id=str(data.get("id") or _generate_id("task")),
            project_id=str(data.get("project_id") or ""),
            title=str(data.get("title") or ""),
            start_date=parse_date(data.get("start_date")),
            due_date=parse_date(data.get("due_date")),
            estimated_hours=float(hours) if hours is not None else None,
            is_milestone=bool(data.get("is_milestone", False)),
            status_id=data.get("status_id"),
            assignee_id=data.get("assignee_id"),
            parent_task_id=data.get("parent_task_id"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def set_dates(self, start_date: Optional[date], due_date: Optional[date]) -> None:
        self.start_date = start_date
        self.due_date = due_date
        self.touch()


@dataclass
class Dependency:
    """Directed edge: ``blocking_task_id`` is expected to conclude before ``blocked_task_id``.

    Titles are denormalized snapshots taken when the edge was created, kept
    for display only.
    """

    id: str = field(default_factory=lambda: _generate_id("dep"))
    blocking_task_id: str = ""
    blocked_task_id: str = ""
    project_id: str = ""
    blocking_title: str = ""
    blocked_title: str = ""
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dependency":
        return cls(
            id=str(data.get("id") or _generate_id("dep")),
            blocking_task_id=str(data.get("blocking_task_id") or ""),
            blocked_task_id=str(data.get("blocked_task_id") or ""),
            project_id=str(data.get("project_id") or ""),
            blocking_title=str(data.get("blocking_title") or ""),
            blocked_title=str(data.get("blocked_title") or ""),
            created_at=str(data.get("created_at") or _now_iso()),
        )
