"""Dependency graph and timeline scheduling engine.

``model`` holds the records, ``store`` the transactional board, ``graph``
the edge invariants and reachability, ``scheduler`` the two-phase date
cascade, ``progress`` the derived read metrics and ``notifier`` the
post-commit event port.  :class:`~.engine.TaskEngine` ties them together.
"""

from .engine import TaskEngine
from .scheduler import TimelineResult, TimelineUpdate

__all__ = ["TaskEngine", "TimelineResult", "TimelineUpdate"]
