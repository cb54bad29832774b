"""Execution engine driving runs through a workflow graph."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from .constants import DEFAULT_MAX_CONCURRENCY
from .contracts import (
    RunSnapshot,
    RunStatus,
    StepError,
    StepResult,
    StepStatus,
    SuspendToken,
    TransitionEvent,
    check_transition,
    utcnow,
)
from .errors import StorageError, ValidationError
from .graph import StepDefinition, WorkflowDefinition
from .persistence.store import SnapshotStore
from .suspend import StepContext, StepSuspended, SuspendController
from .watch import Watcher

logger = logging.getLogger(__name__)

_KEEP = object()


class _Execution:
    """State shared by all steps advanced during one start/resume call."""

    def __init__(
        self, workflow: WorkflowDefinition, snapshot: RunSnapshot, max_concurrency: int
    ) -> None:
        self.workflow = workflow
        self.snapshot = snapshot
        self.commit_lock = asyncio.Lock()
        self.slots = asyncio.Semaphore(max_concurrency)

    @property
    def run_id(self) -> str:
        return self.snapshot.run_id


class ExecutionEngine:
    """Runs ready steps until the run reaches a fixed point.

    Every step transition is persisted through the ``SnapshotStore`` and then
    published to the ``Watcher`` before the next transition of the same run
    is applied.
    """

    def __init__(
        self,
        store: SnapshotStore,
        watcher: Optional[Watcher] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._watcher = watcher or Watcher()
        self._max_concurrency = max_concurrency

    @property
    def watcher(self) -> Watcher:
        return self._watcher

    # ------------------------------------------------------------------
    # Entry points
    def new_snapshot(
        self, workflow: WorkflowDefinition, run_id: str, trigger_data: Dict[str, Any]
    ) -> RunSnapshot:
        return RunSnapshot(
            run_id=run_id,
            workflow_name=workflow.name,
            trigger_data=trigger_data,
            step_results={step_id: StepResult() for step_id in workflow.graph.step_ids},
        )

    async def start(
        self, workflow: WorkflowDefinition, snapshot: RunSnapshot
    ) -> RunSnapshot:
        """Persist a fresh run and drive it to a fixed point."""
        execution = _Execution(workflow, snapshot, self._max_concurrency)
        await self._save(execution)
        logger.info(f"Started run {snapshot.run_id} of workflow {workflow.name}")
        await self._drive(execution)
        await self._finish(execution)
        return snapshot

    async def proceed(
        self, workflow: WorkflowDefinition, snapshot: RunSnapshot
    ) -> RunSnapshot:
        """Drive an already stored run from its ready steps."""
        execution = _Execution(workflow, snapshot, self._max_concurrency)
        logger.info(f"Continuing stalled run {snapshot.run_id} of workflow {workflow.name}")
        await self._drive(execution)
        await self._finish(execution)
        return snapshot

    async def resume(
        self,
        workflow: WorkflowDefinition,
        snapshot: RunSnapshot,
        step_id: str,
        context: Dict[str, Any],
    ) -> RunSnapshot:
        """Re-enter a suspended step, then keep advancing the run."""
        execution = _Execution(workflow, snapshot, self._max_concurrency)
        logger.info(f"Resuming step {step_id} of run {snapshot.run_id}")
        await self._run_step(execution, step_id, resume_context=context)
        await self._drive(execution)
        await self._finish(execution)
        return snapshot

    # ------------------------------------------------------------------
    # Scheduling
    @staticmethod
    def is_ready(workflow: WorkflowDefinition, snapshot: RunSnapshot, step_id: str) -> bool:
        """A step is ready when it is pending and all predecessors succeeded."""
        results = snapshot.step_results
        if results[step_id].status != StepStatus.PENDING:
            return False
        return all(
            results[predecessor].status == StepStatus.SUCCESS
            for predecessor in workflow.graph.predecessors(step_id)
        )

    @classmethod
    def is_stalled(cls, workflow: WorkflowDefinition, snapshot: RunSnapshot) -> bool:
        """True for a stored run that stopped early with ready steps left.

        This is the state a run is left in when a start could not persist a
        step outcome: nothing is running or suspended, yet some step could run.
        """
        statuses = {result.status for result in snapshot.step_results.values()}
        if StepStatus.RUNNING in statuses or StepStatus.SUSPENDED in statuses:
            return False
        return any(
            cls.is_ready(workflow, snapshot, step_id) for step_id in snapshot.step_results
        )

    def _is_eligible(self, execution: _Execution, step_id: str) -> bool:
        return self.is_ready(execution.workflow, execution.snapshot, step_id)

    async def _drive(self, execution: _Execution) -> None:
        graph = execution.workflow.graph
        for batch in graph.topological_order():
            eligible = [
                step_id
                for step_id in graph.ordered(batch)
                if self._is_eligible(execution, step_id)
            ]
            if not eligible:
                continue
            outcomes = await asyncio.gather(
                *(self._run_step(execution, step_id) for step_id in eligible),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

    async def _finish(self, execution: _Execution) -> None:
        snapshot = execution.snapshot
        status = snapshot.status
        skipped = self.skipped_steps(execution.workflow, snapshot)
        if skipped:
            logger.info(
                f"Run {snapshot.run_id}: steps {sorted(skipped)} will not run "
                "because a predecessor failed"
            )
        if status not in (RunStatus.COMPLETED, RunStatus.FAILED):
            logger.info(
                f"Run {snapshot.run_id} paused with status {status.value}; "
                f"suspended steps: {snapshot.suspended_steps()}"
            )
            return

        async with execution.commit_lock:
            await self._save(execution)
            await self._watcher.publish(
                TransitionEvent(
                    run_id=snapshot.run_id,
                    step_id=None,
                    status=status.value,
                    active_paths=frozenset(snapshot.active_paths),
                    run_status=status,
                )
            )
        logger.info(f"Run {snapshot.run_id} finished with status {status.value}")

    @staticmethod
    def skipped_steps(workflow: WorkflowDefinition, snapshot: RunSnapshot) -> set[str]:
        """Pending steps that can never start because an ancestor failed."""
        skipped: set[str] = set()
        for step_id, result in snapshot.step_results.items():
            if result.status == StepStatus.FAILED:
                skipped |= workflow.graph.descendants(step_id)
        return {
            step_id
            for step_id in skipped
            if snapshot.step_results[step_id].status == StepStatus.PENDING
        }

    # ------------------------------------------------------------------
    # Step execution
    def _build_inputs(
        self,
        execution: _Execution,
        definition: StepDefinition,
        resume_context: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        snapshot = execution.snapshot
        inputs: Dict[str, Any] = dict(snapshot.trigger_data)
        for predecessor in definition.after:
            output = snapshot.step_results[predecessor].output
            if isinstance(output, dict):
                inputs.update(output)
        if resume_context:
            inputs.update(resume_context)
        return inputs

    def _completed_outputs(self, execution: _Execution) -> Dict[str, Any]:
        return {
            step_id: result.output
            for step_id, result in execution.snapshot.step_results.items()
            if result.status == StepStatus.SUCCESS
        }

    async def _run_step(
        self,
        execution: _Execution,
        step_id: str,
        resume_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        definition = execution.workflow.graph.get(step_id)
        snapshot = execution.snapshot
        previous_token: Optional[SuspendToken] = None
        running_continuation: Any = _KEEP

        if resume_context is not None:
            previous_token = snapshot.continuations.get(step_id)
            if previous_token is not None:
                running_continuation = previous_token.model_copy(
                    update={"resume_data": dict(resume_context)}
                )

        async with execution.slots:
            previous_result = snapshot.step_results[step_id]
            started_at = utcnow()
            await self._commit(
                execution,
                step_id,
                StepResult(status=StepStatus.RUNNING, started_at=started_at),
                continuation=running_continuation,
            )

            inputs = self._build_inputs(execution, definition, resume_context)
            controller = SuspendController(step_id, previous_token)
            try:
                validated = self._validate_input(definition, inputs)
                ctx = StepContext(
                    run_id=snapshot.run_id,
                    step_id=step_id,
                    trigger_data=dict(snapshot.trigger_data),
                    inputs=inputs,
                    outputs=self._completed_outputs(execution),
                    controller=controller,
                    resume_data=resume_context,
                    position=previous_token.label if previous_token else None,
                    locals=previous_token.locals if previous_token else None,
                    validated=validated,
                )
                output = await definition.body.execute(ctx)
                output = self._normalize_output(definition, output)
            except StepSuspended as signal:
                token = signal.token
                logger.info(
                    f"Step {step_id} of run {snapshot.run_id} suspended "
                    f"(point {token.sequence})"
                )
                outcome = StepResult(
                    status=StepStatus.SUSPENDED,
                    suspend_payload=token.payload,
                    started_at=started_at,
                    ended_at=utcnow(),
                )
                continuation: Any = token
            except Exception as e:
                logger.exception(f"Step {step_id} of run {snapshot.run_id} failed")
                outcome = StepResult(
                    status=StepStatus.FAILED,
                    error=StepError.from_exception(e),
                    started_at=started_at,
                    ended_at=utcnow(),
                )
                continuation = None
            else:
                logger.info(f"Step {step_id} of run {snapshot.run_id} succeeded")
                outcome = StepResult(
                    status=StepStatus.SUCCESS,
                    output=output,
                    started_at=started_at,
                    ended_at=utcnow(),
                )
                continuation = None

            try:
                await self._commit(execution, step_id, outcome, continuation=continuation)
            except StorageError:
                await self._restore(execution, step_id, previous_result, previous_token)
                raise

    async def _restore(
        self,
        execution: _Execution,
        step_id: str,
        result: StepResult,
        token: Optional[SuspendToken],
    ) -> None:
        """Put a step back to its state before the current invocation.

        Used when the outcome of an invocation could not be persisted, so the
        stored run does not keep the step ``running`` and the same start or
        resume can be retried. If even this save fails the run is marked as
        unpersisted in the log and the stored snapshot is left as it was.
        """
        snapshot = execution.snapshot
        async with execution.commit_lock:
            snapshot.step_results[step_id] = result
            if result.status == StepStatus.SUSPENDED:
                snapshot.active_paths.add(step_id)
            else:
                snapshot.active_paths.discard(step_id)
            if token is None:
                snapshot.continuations.pop(step_id, None)
            else:
                snapshot.continuations[step_id] = token

            try:
                await self._save(execution)
            except StorageError:
                logger.error(
                    f"Run {snapshot.run_id} is unpersisted: could not restore step "
                    f"{step_id} to {result.status.value}; the stored snapshot still "
                    "shows it running"
                )
                return

            logger.warning(
                f"Restored step {step_id} of run {snapshot.run_id} to "
                f"{result.status.value} after a failed save"
            )
            await self._watcher.publish(
                TransitionEvent(
                    run_id=snapshot.run_id,
                    step_id=step_id,
                    status=result.status.value,
                    active_paths=frozenset(snapshot.active_paths),
                    run_status=snapshot.status,
                )
            )

    def _validate_input(self, definition: StepDefinition, inputs: Dict[str, Any]) -> Any:
        if definition.input_model is None:
            return None
        try:
            return definition.input_model.model_validate(inputs)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Input for step {definition.id} is invalid: {e}", definition.id
            ) from e

    def _normalize_output(self, definition: StepDefinition, output: Any) -> Any:
        if definition.output_model is not None:
            if isinstance(output, BaseModel):
                output = output.model_dump()
            try:
                output = definition.output_model.model_validate(output)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Output of step {definition.id} is invalid: {e}", definition.id
                ) from e
            return output.model_dump(mode="json")
        try:
            return to_jsonable_python(output)
        except PydanticSerializationError as e:
            raise TypeError(
                f"Output of step {definition.id} is not JSON serializable: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Transitions
    async def _commit(
        self,
        execution: _Execution,
        step_id: str,
        result: StepResult,
        continuation: Any = _KEEP,
    ) -> None:
        """Apply one step transition, persist it and notify watchers.

        If persisting fails the in-memory run is restored to its previous
        state and ``StorageError`` propagates.
        """
        snapshot = execution.snapshot
        async with execution.commit_lock:
            current = snapshot.step_results[step_id]
            check_transition(step_id, current.status, result.status)

            previous_active = set(snapshot.active_paths)
            previous_continuation = snapshot.continuations.get(step_id)
            previous_updated = snapshot.updated_at

            snapshot.step_results[step_id] = result
            if result.status in (StepStatus.RUNNING, StepStatus.SUSPENDED):
                snapshot.active_paths.add(step_id)
            else:
                snapshot.active_paths.discard(step_id)
            if continuation is None:
                snapshot.continuations.pop(step_id, None)
            elif continuation is not _KEEP:
                snapshot.continuations[step_id] = continuation

            try:
                await self._save(execution)
            except StorageError:
                snapshot.step_results[step_id] = current
                snapshot.active_paths = previous_active
                if previous_continuation is None:
                    snapshot.continuations.pop(step_id, None)
                else:
                    snapshot.continuations[step_id] = previous_continuation
                snapshot.updated_at = previous_updated
                logger.error(
                    f"Could not persist transition of step {step_id} to "
                    f"{result.status.value} for run {snapshot.run_id}; rolled back"
                )
                raise

            await self._watcher.publish(
                TransitionEvent(
                    run_id=snapshot.run_id,
                    step_id=step_id,
                    status=result.status.value,
                    active_paths=frozenset(snapshot.active_paths),
                    run_status=snapshot.status,
                )
            )

    async def _save(self, execution: _Execution) -> None:
        snapshot = execution.snapshot
        snapshot.updated_at = utcnow()
        try:
            await self._store.save(snapshot.run_id, snapshot)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to save snapshot for run {snapshot.run_id}: {e}"
            ) from e
        logger.debug(f"Saved snapshot for run {snapshot.run_id}")
