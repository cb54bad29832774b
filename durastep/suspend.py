"""Suspension primitive exposed to running step bodies."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, NoReturn, Optional

from pydantic_core import PydanticSerializationError, to_jsonable_python

from .contracts import SuspendToken

logger = logging.getLogger(__name__)


class StepSuspended(BaseException):
    """Control-flow signal raised by ``suspend()`` to unwind a step body.

    Derives from ``BaseException`` so ``except Exception`` blocks inside step
    bodies let it through.
    """

    def __init__(self, token: SuspendToken) -> None:
        super().__init__(f"Step {token.step_id} suspended")
        self.token = token


class SuspendController:
    """Issues the suspend token for a single step invocation.

    Only one suspension point can be current: once ``suspend`` has been called
    the invocation is over, and a second call made while unwinding is refused.
    """

    def __init__(self, step_id: str, previous: Optional[SuspendToken] = None) -> None:
        self.step_id = step_id
        self._previous = previous
        self.default_resume_at: Optional[str] = None
        self.token: Optional[SuspendToken] = None

    @property
    def sequence(self) -> int:
        """Number of suspension points this step has reached so far."""
        return self._previous.sequence if self._previous else 0

    def suspend(
        self,
        payload: Any = None,
        *,
        resume_at: Optional[str] = None,
        locals: Optional[Mapping[str, Any]] = None,
    ) -> NoReturn:
        if self.token is not None:
            raise RuntimeError(
                f"Step {self.step_id} already suspended at point {self.token.sequence}"
            )
        try:
            payload = to_jsonable_python(payload)
            saved_locals = to_jsonable_python(dict(locals or {}))
        except PydanticSerializationError as e:
            raise TypeError(
                f"Suspend payload and locals of step {self.step_id} must be JSON serializable: {e}"
            ) from e

        self.token = SuspendToken(
            step_id=self.step_id,
            sequence=self.sequence + 1,
            label=resume_at if resume_at is not None else self.default_resume_at,
            payload=payload,
            locals=saved_locals,
        )
        logger.debug(
            f"Step {self.step_id} reached suspension point {self.token.sequence} "
            f"(resume_at={self.token.label})"
        )
        raise StepSuspended(self.token)


class StepContext:
    """Everything a step body can see while it runs."""

    def __init__(
        self,
        *,
        run_id: str,
        step_id: str,
        trigger_data: Mapping[str, Any],
        inputs: Dict[str, Any],
        outputs: Mapping[str, Any],
        controller: SuspendController,
        resume_data: Optional[Dict[str, Any]] = None,
        position: Optional[str] = None,
        locals: Optional[Dict[str, Any]] = None,
        validated: Any = None,
    ) -> None:
        self.run_id = run_id
        self.step_id = step_id
        self.trigger_data = trigger_data
        self.inputs = inputs
        self.resume_data = resume_data
        self.position = position
        self.locals: Dict[str, Any] = copy.deepcopy(locals) if locals else {}
        self.validated = validated
        self._outputs = outputs
        self._controller = controller

    @property
    def resume_count(self) -> int:
        """How many times this step has been suspended before this invocation."""
        return self._controller.sequence

    @property
    def resumed(self) -> bool:
        return self.resume_data is not None

    def get_step_output(self, step_id: str) -> Any:
        """Return the recorded output of a completed step."""
        if step_id not in self._outputs:
            raise KeyError(f"No output recorded for step {step_id}")
        return self._outputs[step_id]

    def set_default_resume_at(self, label: Optional[str]) -> None:
        self._controller.default_resume_at = label

    def suspend(self, payload: Any = None, *, resume_at: Optional[str] = None) -> NoReturn:
        """Pause the step here; the rest of the body runs only after resume.

        ``payload`` is stored with the step result for whoever decides to
        resume it. ``resume_at`` names the continuation to enter on resume.
        """
        self._controller.suspend(payload, resume_at=resume_at, locals=self.locals)
