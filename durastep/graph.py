"""Workflow graph definitions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .codec import to_json_data
from .errors import FrozenGraphError, GraphError, ValidationError
from .steps import Step, as_step

logger = logging.getLogger(__name__)


class StepDefinition(BaseModel):
    """Declares one step of a workflow."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    body: Step
    after: Tuple[str, ...] = Field(default_factory=tuple)
    input_model: Optional[Type[BaseModel]] = None
    output_model: Optional[Type[BaseModel]] = None
    description: Optional[str] = None


class StepGraph:
    """Steps plus the dependency relation between them.

    The graph is mutable until ``commit()``; afterwards it only supports
    queries and topological iteration.
    """

    def __init__(self) -> None:
        self._definitions: List[StepDefinition] = []
        self._by_id: Dict[str, StepDefinition] = {}
        self._successors: Dict[str, List[str]] = {}
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def add_step(self, definition: StepDefinition) -> StepDefinition:
        if self._committed:
            raise FrozenGraphError(
                f"Cannot add step {definition.id}: graph is committed"
            )
        self._definitions.append(definition)
        return definition

    def commit(self) -> None:
        """Validate the graph and freeze it.

        Raises:
            GraphError: On duplicate step ids, unknown predecessors or cycles.
        """
        if self._committed:
            return

        by_id: Dict[str, StepDefinition] = {}
        for definition in self._definitions:
            if definition.id in by_id:
                raise GraphError(f"Duplicate step id: {definition.id}")
            by_id[definition.id] = definition

        successors: Dict[str, List[str]] = {step_id: [] for step_id in by_id}
        for definition in self._definitions:
            for predecessor in definition.after:
                if predecessor not in by_id:
                    raise GraphError(
                        f"Step {definition.id} depends on unknown step {predecessor}"
                    )
                if predecessor == definition.id:
                    raise GraphError(f"Step {definition.id} depends on itself")
                successors[predecessor].append(definition.id)

        self._by_id = by_id
        self._successors = successors

        ordered = sum(len(batch) for batch in self._kahn_batches())
        if ordered != len(by_id):
            self._by_id = {}
            self._successors = {}
            raise GraphError("Workflow graph contains a cycle")

        self._committed = True

    def _require_committed(self) -> None:
        if not self._committed:
            raise GraphError("Graph must be committed before it is queried")

    def _kahn_batches(self) -> Iterator[frozenset[str]]:
        remaining = {
            step_id: len(definition.after) for step_id, definition in self._by_id.items()
        }
        ready = [step_id for step_id, count in remaining.items() if count == 0]
        while ready:
            yield frozenset(ready)
            next_ready: List[str] = []
            for step_id in ready:
                for successor in self._successors[step_id]:
                    remaining[successor] -= 1
                    if remaining[successor] == 0:
                        next_ready.append(successor)
            ready = next_ready

    def topological_order(self) -> Iterator[frozenset[str]]:
        """Lazily yield batches of step ids whose predecessors all come earlier."""
        self._require_committed()
        return self._kahn_batches()

    def ordered(self, batch: Iterable[str]) -> List[str]:
        """Return ``batch`` sorted by declaration order."""
        members = set(batch)
        return [d.id for d in self._definitions if d.id in members]

    def get(self, step_id: str) -> StepDefinition:
        try:
            return self._by_id[step_id] if self._committed else next(
                d for d in self._definitions if d.id == step_id
            )
        except (KeyError, StopIteration):
            raise GraphError(f"Unknown step: {step_id}") from None

    def __contains__(self, step_id: object) -> bool:
        return any(d.id == step_id for d in self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    @property
    def step_ids(self) -> List[str]:
        return [d.id for d in self._definitions]

    def predecessors(self, step_id: str) -> Tuple[str, ...]:
        return self.get(step_id).after

    def successors(self, step_id: str) -> List[str]:
        self._require_committed()
        return list(self._successors[step_id])

    def descendants(self, step_id: str) -> set[str]:
        """All steps reachable from ``step_id`` through dependency edges."""
        self._require_committed()
        seen: set[str] = set()
        stack = list(self._successors[step_id])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._successors[current])
        return seen


_PREVIOUS = object()


class WorkflowDefinition:
    """Named workflow: trigger contract plus a graph of steps.

    Steps added without ``after`` run after the previously added step, which
    gives a linear chain; pass ``after=()`` for an additional root or a tuple
    of step ids for DAG joins.
    """

    def __init__(
        self,
        name: str,
        trigger_model: Optional[Type[BaseModel]] = None,
        description: Optional[str] = None,
    ) -> None:
        self.name = name
        self.trigger_model = trigger_model
        self.description = description
        self.graph = StepGraph()
        self._last_step: Optional[str] = None

    def step(
        self,
        body: Any,
        id: Optional[str] = None,
        *,
        after: Any = _PREVIOUS,
        input_model: Optional[Type[BaseModel]] = None,
        output_model: Optional[Type[BaseModel]] = None,
        description: Optional[str] = None,
    ) -> "WorkflowDefinition":
        """Add a step and return ``self`` for chaining."""
        step_body = as_step(body, id)
        step_id = id or step_body.name
        if not step_id:
            raise GraphError(f"Step {body!r} needs an explicit id")

        if after is _PREVIOUS:
            predecessors: Tuple[str, ...] = (
                (self._last_step,) if self._last_step else ()
            )
        elif isinstance(after, str):
            predecessors = (after,)
        else:
            predecessors = tuple(after or ())

        self.graph.add_step(
            StepDefinition(
                id=step_id,
                body=step_body,
                after=predecessors,
                input_model=input_model,
                output_model=output_model,
                description=description,
            )
        )
        self._last_step = step_id
        return self

    then = step

    @property
    def committed(self) -> bool:
        return self.graph.committed

    def commit(self) -> "WorkflowDefinition":
        self.graph.commit()
        logger.debug(
            f"Committed workflow {self.name} with steps {self.graph.step_ids}"
        )
        return self

    def validate_trigger(self, trigger_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Check ``trigger_data`` against ``trigger_model``.

        Returns the normalized trigger data.
        """
        data = dict(trigger_data or {})
        if self.trigger_model is None:
            return to_json_data(data, f"Trigger data for workflow {self.name}")
        try:
            return self.trigger_model.model_validate(data).model_dump(mode="json")
        except PydanticValidationError as e:
            raise ValidationError(
                f"Trigger data for workflow {self.name} is invalid: {e}"
            ) from e
