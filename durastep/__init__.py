"""Durastep: durable step-graph execution with suspend and resume."""

from .contracts import (
    RunSnapshot,
    RunStatus,
    StepError,
    StepResult,
    StepStatus,
    SuspendToken,
    TransitionEvent,
)
from .engine import ExecutionEngine
from .errors import (
    DurastepError,
    FrozenGraphError,
    GraphError,
    NotFoundError,
    NotSuspendedError,
    RunAlreadyStartedError,
    RunBusyError,
    StorageError,
    UnknownRunError,
    UnknownWorkflowError,
    ValidationError,
)
from .graph import StepDefinition, StepGraph, WorkflowDefinition
from .persistence import SnapshotStore, get_store
from .runtime import Orchestrator, RunHandle, WorkflowRegistry
from .steps import FunctionStep, PhasedStep, Step, step
from .suspend import StepContext, SuspendController
from .watch import Watcher

__version__ = "0.1.0"
__all__ = [
    "DurastepError",
    "ExecutionEngine",
    "FrozenGraphError",
    "FunctionStep",
    "GraphError",
    "NotFoundError",
    "NotSuspendedError",
    "Orchestrator",
    "PhasedStep",
    "RunAlreadyStartedError",
    "RunBusyError",
    "RunHandle",
    "RunSnapshot",
    "RunStatus",
    "SnapshotStore",
    "Step",
    "StepContext",
    "StepDefinition",
    "StepError",
    "StepGraph",
    "StepResult",
    "StepStatus",
    "StorageError",
    "SuspendController",
    "SuspendToken",
    "TransitionEvent",
    "UnknownRunError",
    "UnknownWorkflowError",
    "ValidationError",
    "Watcher",
    "WorkflowDefinition",
    "WorkflowRegistry",
    "get_store",
    "step",
]
