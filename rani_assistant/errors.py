from __future__ import annotations


class RaniError(RuntimeError):
    """Base class for engine errors."""


class SpawnError(RaniError):
    """A command session could not be started (or elevation was refused)."""


class NotStartedError(RaniError):
    pass


class SessionClosedError(RaniError):
    pass


class IntegrityViolation(RaniError):
    """The script read back by a session did not match the digest we wrote."""

    def __init__(self, task_id: str, message: str = "") -> None:
        super().__init__(message or f"Integrity check failed for task {task_id}")
        self.task_id = task_id


class TaskExecutionFailure(RaniError):
    """A single task finished unsuccessfully; the pass continues."""

    def __init__(self, task_id: str, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.returncode = returncode


class BusyError(RaniError):
    pass


class UnsafePathError(ValueError):
    pass
