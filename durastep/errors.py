"""Exception hierarchy for durastep."""

from __future__ import annotations

from typing import Optional


class DurastepError(Exception):
    """Base class for all engine errors."""


class GraphError(DurastepError):
    """Raised when a workflow definition is malformed."""


class FrozenGraphError(GraphError):
    """Raised when a committed graph is mutated."""


class ValidationError(DurastepError):
    """Raised when trigger data or a step input/output does not match its model."""

    def __init__(self, message: str, step_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.step_id = step_id


class UnknownWorkflowError(DurastepError):
    """Raised when a workflow name is not registered."""


class RunMisuseError(DurastepError):
    """Base class for errors caused by calling start/resume incorrectly."""

    def __init__(
        self, message: str, run_id: str, step_id: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.step_id = step_id


class UnknownRunError(RunMisuseError):
    """Raised when resuming a run that has no stored snapshot."""


class NotSuspendedError(RunMisuseError):
    """Raised when resuming a step that is not currently suspended."""


class RunBusyError(RunMisuseError):
    """Raised when another start/resume is already advancing the run."""


class RunAlreadyStartedError(RunMisuseError):
    """Raised when ``start`` is called for a run id that already exists."""


class InvalidTransitionError(DurastepError):
    """Raised when a step status would move backwards."""


class StorageError(DurastepError):
    """Raised when a snapshot cannot be persisted or read back."""


class NotFoundError(StorageError):
    """Raised by snapshot stores when no snapshot exists for a run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"No snapshot stored for run {run_id}")
        self.run_id = run_id
