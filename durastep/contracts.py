"""Core state contracts for durastep runs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .constants import SNAPSHOT_SCHEMA_VERSION
from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    SUSPENDED = "suspended"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward moves of a step status. Nothing leaves success or failed.
_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: frozenset(
        {StepStatus.SUCCESS, StepStatus.SUSPENDED, StepStatus.FAILED}
    ),
    StepStatus.SUSPENDED: frozenset({StepStatus.RUNNING}),
    StepStatus.SUCCESS: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def check_transition(step_id: str, current: StepStatus, new: StepStatus) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> new`` is allowed."""
    if new not in _TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Step {step_id} cannot move from {current.value} to {new.value}"
        )


class StepError(BaseModel):
    """Serializable description of a step failure."""

    type: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "StepError":
        return cls(type=type(exc).__name__, message=str(exc))


class StepResult(BaseModel):
    """Status and outcome of one step within a run."""

    status: StepStatus = StepStatus.PENDING
    output: Any = None
    suspend_payload: Any = None
    error: Optional[StepError] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "StepResult":
        if self.error is not None and self.status != StepStatus.FAILED:
            raise ValueError("error is only allowed on failed steps")
        if self.status == StepStatus.FAILED and self.error is None:
            raise ValueError("failed steps must carry an error")
        if self.output is not None and self.status != StepStatus.SUCCESS:
            raise ValueError("output is only allowed on successful steps")
        if self.suspend_payload is not None and self.status != StepStatus.SUSPENDED:
            raise ValueError("suspend_payload is only allowed on suspended steps")
        return self


class SuspendToken(BaseModel):
    """Continuation marker for the suspension point a step last reached.

    ``label`` names the state the step resumes into (``None`` means the body
    restarts from its entry point and inspects ``resume_data``). ``locals``
    carries step-local values that must survive the suspension.
    """

    step_id: str
    sequence: int = 1
    label: Optional[str] = None
    payload: Any = None
    locals: Dict[str, Any] = Field(default_factory=dict)
    resume_data: Optional[Dict[str, Any]] = None
    issued_at: datetime = Field(default_factory=utcnow)


class RunSnapshot(BaseModel):
    """Serializable projection of a run, sufficient to resume it."""

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    run_id: str
    workflow_name: str
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    step_results: Dict[str, StepResult] = Field(default_factory=dict)
    active_paths: set[str] = Field(default_factory=set)
    continuations: Dict[str, SuspendToken] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> RunStatus:
        """Overall run status derived from the step results."""
        statuses = {result.status for result in self.step_results.values()}
        if StepStatus.RUNNING in statuses:
            return RunStatus.RUNNING
        if StepStatus.SUSPENDED in statuses:
            return RunStatus.SUSPENDED
        if StepStatus.FAILED in statuses:
            return RunStatus.FAILED
        if StepStatus.PENDING in statuses:
            return RunStatus.RUNNING
        return RunStatus.COMPLETED

    def result(self, step_id: str) -> StepResult:
        return self.step_results[step_id]

    def suspended_steps(self) -> list[str]:
        return [
            step_id
            for step_id, result in self.step_results.items()
            if result.status == StepStatus.SUSPENDED
        ]


class TransitionEvent(BaseModel):
    """Immutable notification delivered to watchers after a transition.

    ``step_id`` is ``None`` for the run-level event emitted when a run
    reaches completion or failure.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    step_id: Optional[str]
    status: str
    active_paths: FrozenSet[str]
    run_status: RunStatus
    timestamp: datetime = Field(default_factory=utcnow)
