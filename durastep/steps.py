"""Step body implementations."""

from __future__ import annotations

import abc
import inspect
from typing import Any, Callable, Optional, Tuple

from .suspend import StepContext


class Step(abc.ABC):
    """A unit of work run by the engine.

    Subclasses implement ``execute``. Calling ``ctx.suspend()`` inside it
    pauses the step until the run is resumed for this step.
    """

    name: Optional[str] = None

    @abc.abstractmethod
    async def execute(self, ctx: StepContext) -> Any:
        raise NotImplementedError


class FunctionStep(Step):
    """Adapts a plain (sync or async) callable taking a ``StepContext``."""

    def __init__(self, fn: Callable[[StepContext], Any], name: Optional[str] = None) -> None:
        self._fn = fn
        fn_name = getattr(fn, "__name__", None)
        self.name = name or (fn_name if fn_name != "<lambda>" else None)

    async def execute(self, ctx: StepContext) -> Any:
        result = self._fn(ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionStep({self.name!r})"


class PhasedStep(Step):
    """Step body written as an ordered sequence of phases.

    Each phase is a method named in ``phases``. Suspending inside a phase
    resumes at the start of the following phase, so completed phases are not
    replayed. Return values of non-final phases are kept in
    ``ctx.locals[<phase>]``; the final phase's return value is the step output.

    The final phase has no successor, so suspending inside it resumes at the
    start of that same phase: code before its ``suspend()`` call runs again
    and should check ``ctx.resumed`` or ``ctx.locals`` where that matters.
    Pass ``resume_at=`` to ``ctx.suspend()`` to choose another phase.
    """

    phases: Tuple[str, ...] = ()

    async def execute(self, ctx: StepContext) -> Any:
        if not self.phases:
            raise TypeError(f"{type(self).__name__} declares no phases")

        start = ctx.position or self.phases[0]
        if start not in self.phases:
            raise ValueError(f"{type(self).__name__} has no phase {start!r}")

        result: Any = None
        first = self.phases.index(start)
        for index in range(first, len(self.phases)):
            phase = self.phases[index]
            is_last = index == len(self.phases) - 1
            ctx.set_default_resume_at(phase if is_last else self.phases[index + 1])

            result = getattr(self, phase)(ctx)
            if inspect.isawaitable(result):
                result = await result
            if not is_last:
                ctx.locals[phase] = result
        return result


def as_step(body: Any, name: Optional[str] = None) -> Step:
    """Coerce ``body`` into a ``Step`` instance."""
    if isinstance(body, Step):
        if name and not body.name:
            body.name = name
        return body
    if inspect.isclass(body) and issubclass(body, Step):
        return as_step(body(), name)
    if callable(body):
        return FunctionStep(body, name)
    raise TypeError(f"Cannot use {body!r} as a step body")


def step(name: Optional[str] = None) -> Callable[[Callable[[StepContext], Any]], FunctionStep]:
    """Decorator turning a function into a ``FunctionStep``."""

    def decorator(fn: Callable[[StepContext], Any]) -> FunctionStep:
        return FunctionStep(fn, name)

    return decorator
