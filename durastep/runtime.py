"""Caller-facing runtime: workflow registry, orchestrator and run handles."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .codec import to_json_data
from .config import DurastepConfig, load_config
from .contracts import RunSnapshot, RunStatus, StepResult, StepStatus
from .engine import ExecutionEngine
from .errors import (
    NotFoundError,
    NotSuspendedError,
    RunAlreadyStartedError,
    UnknownRunError,
    UnknownWorkflowError,
)
from .graph import WorkflowDefinition
from .locks import RunLockManager
from .persistence import SnapshotStore, get_store
from .watch import Subscriber, Watcher

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Committed workflows addressable by name."""

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}

    def register(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Commit ``workflow`` if needed and make it available by name."""
        if not workflow.committed:
            workflow.commit()
        existing = self._workflows.get(workflow.name)
        if existing is not None and existing is not workflow:
            raise ValueError(f"Workflow {workflow.name} is already registered")
        self._workflows[workflow.name] = workflow
        logger.info(f"Registered workflow {workflow.name}")
        return workflow

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._workflows[name]
        except KeyError:
            raise UnknownWorkflowError(f"Workflow {name} is not registered") from None

    def __contains__(self, name: object) -> bool:
        return name in self._workflows

    def names(self) -> List[str]:
        return list(self._workflows)


class Orchestrator:
    """Owns the registry, store, watcher and engine for one process.

    Example:
        orchestrator = Orchestrator()
        orchestrator.register(workflow)
        run = orchestrator.create_run("approval")
        await run.start({"amount": 10})
        await orchestrator.resume(run.run_id, "review", {"approved": True})
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        config: Optional[DurastepConfig] = None,
        watcher: Optional[Watcher] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or get_store(config=self.config)
        self.watcher = watcher or Watcher()
        self.registry = WorkflowRegistry()
        self.locks = RunLockManager(self.config.engine.busy_policy)
        self.engine = ExecutionEngine(
            self.store,
            self.watcher,
            max_concurrency=self.config.engine.max_concurrency,
        )

    def register(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        return self.registry.register(workflow)

    def create_run(self, workflow_name: str, run_id: Optional[str] = None) -> "RunHandle":
        workflow = self.registry.get(workflow_name)
        return RunHandle(self, workflow, run_id or str(uuid.uuid4()))

    async def get_run(self, run_id: str) -> "RunHandle":
        """Rebuild a handle for a stored run."""
        snapshot = await self._load(run_id)
        handle = RunHandle(self, self.registry.get(snapshot.workflow_name), run_id)
        handle._snapshot = snapshot
        return handle

    def watch(self, callback: Subscriber, run_id: Optional[str] = None) -> Callable[[], None]:
        return self.watcher.subscribe(run_id, callback)

    async def _load(self, run_id: str) -> RunSnapshot:
        try:
            return await self.store.load(run_id)
        except NotFoundError:
            raise UnknownRunError(f"Unknown run: {run_id}", run_id) from None

    async def start(
        self,
        workflow: WorkflowDefinition,
        run_id: str,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> RunSnapshot:
        data = workflow.validate_trigger(trigger_data)
        async with self.locks.hold(run_id):
            try:
                existing = await self.store.load(run_id)
            except NotFoundError:
                snapshot = self.engine.new_snapshot(workflow, run_id, data)
                return await self.engine.start(workflow, snapshot)

            # a start that failed to persist a step outcome may be retried
            if (
                existing.workflow_name == workflow.name
                and existing.trigger_data == data
                and ExecutionEngine.is_stalled(workflow, existing)
            ):
                return await self.engine.proceed(workflow, existing)
            raise RunAlreadyStartedError(
                f"Run {run_id} has already been started", run_id
            )

    async def resume(
        self,
        run_id: str,
        step_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> RunSnapshot:
        """Resume a suspended step of a stored run.

        Raises:
            UnknownRunError: No snapshot exists for ``run_id``.
            NotSuspendedError: ``step_id`` is not currently suspended.
            RunBusyError: The run is busy and the busy policy is ``reject``.
            ValidationError: ``context`` is not JSON serializable.
        """
        resume_context = to_json_data(
            context or {}, f"Resume context for step {step_id}", step_id
        )
        async with self.locks.hold(run_id):
            snapshot = await self._load(run_id)
            result = snapshot.step_results.get(step_id)
            if result is None or result.status != StepStatus.SUSPENDED:
                status = result.status.value if result else "unknown"
                raise NotSuspendedError(
                    f"Step {step_id} of run {run_id} is not suspended (status: {status})",
                    run_id,
                    step_id,
                )
            workflow = self.registry.get(snapshot.workflow_name)
            return await self.engine.resume(
                workflow, snapshot, step_id, resume_context
            )


class RunHandle:
    """One execution of a workflow, as seen by the caller."""

    def __init__(
        self, orchestrator: Orchestrator, workflow: WorkflowDefinition, run_id: str
    ) -> None:
        self._orchestrator = orchestrator
        self.workflow = workflow
        self.run_id = run_id
        self._snapshot: Optional[RunSnapshot] = None

    async def start(self, trigger_data: Optional[Dict[str, Any]] = None) -> Dict[str, StepResult]:
        """Run the workflow until every path completes, fails or suspends."""
        self._snapshot = await self._orchestrator.start(
            self.workflow, self.run_id, trigger_data
        )
        return self.step_results

    async def resume(
        self, step_id: str, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, StepResult]:
        """Resume ``step_id`` with ``context`` merged into its input."""
        self._snapshot = await self._orchestrator.resume(self.run_id, step_id, context)
        return self.step_results

    def watch(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to transition events of this run."""
        return self._orchestrator.watcher.subscribe(self.run_id, callback)

    async def refresh(self) -> RunSnapshot:
        """Reload the latest stored snapshot of this run."""
        self._snapshot = await self._orchestrator._load(self.run_id)
        return self.snapshot

    @property
    def snapshot(self) -> RunSnapshot:
        if self._snapshot is None:
            raise UnknownRunError(f"Run {self.run_id} has not been started", self.run_id)
        return self._snapshot.model_copy(deep=True)

    @property
    def step_results(self) -> Dict[str, StepResult]:
        return self.snapshot.step_results

    @property
    def active_paths(self) -> frozenset[str]:
        return frozenset(self.snapshot.active_paths)

    @property
    def status(self) -> RunStatus:
        return self.snapshot.status

    @property
    def skipped_steps(self) -> set[str]:
        return ExecutionEngine.skipped_steps(self.workflow, self.snapshot)

    def output(self, step_id: str) -> Any:
        return self.snapshot.result(step_id).output

    def __repr__(self) -> str:
        return f"RunHandle(workflow={self.workflow.name!r}, run_id={self.run_id!r})"
