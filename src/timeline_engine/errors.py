"""Error taxonomy shared by every engine operation.

Callers only ever observe one of the :class:`ErrorKind` values.  Unexpected
failures (store I/O, lock timeouts, corrupt YAML) are wrapped into
:class:`InternalError` at the :class:`~timeline_engine.task_engine.engine.TaskEngine`
boundary, with the original exception chained as ``__cause__``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    CONFLICT = "conflict"
    CONSTRAINT_VIOLATION = "constraint_violation"
    INTERNAL = "internal"


class TimelineEngineError(Exception):
    """Base class for errors raised by the engine."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class NotFoundError(TimelineEngineError):
    kind = ErrorKind.NOT_FOUND


class InvalidArgumentError(TimelineEngineError):
    kind = ErrorKind.INVALID_ARGUMENT


class ConflictError(TimelineEngineError):
    kind = ErrorKind.CONFLICT


class ConstraintViolationError(TimelineEngineError):
    kind = ErrorKind.CONSTRAINT_VIOLATION


class InternalError(TimelineEngineError):
    kind = ErrorKind.INTERNAL
