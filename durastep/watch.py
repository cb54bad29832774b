"""Observation of run state transitions."""

from __future__ import annotations

import inspect
import itertools
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from .contracts import TransitionEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[TransitionEvent], Any]

ALL_RUNS = "*"


class Watcher:
    """Delivers transition events to subscribers in subscription order.

    Subscribers may be plain or async callables. A subscriber that raises is
    logged and skipped; delivery to the others continues.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Tuple[int, Subscriber]]] = defaultdict(list)
        self._sequence = itertools.count()

    def subscribe(
        self, run_id: Optional[str], callback: Subscriber
    ) -> Callable[[], None]:
        """Register ``callback`` for ``run_id`` (``None`` watches every run).

        Returns a function that removes the subscription.
        """
        key = run_id or ALL_RUNS
        entry = (next(self._sequence), callback)
        self._subscribers[key].append(entry)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(key)
            if subscribers and entry in subscribers:
                subscribers.remove(entry)
                if not subscribers:
                    del self._subscribers[key]

        return unsubscribe

    def subscriber_count(self, run_id: Optional[str] = None) -> int:
        return len(self._subscribers.get(run_id or ALL_RUNS, ()))

    def _targets(self, run_id: str) -> List[Subscriber]:
        entries = list(self._subscribers.get(run_id, ())) + list(
            self._subscribers.get(ALL_RUNS, ())
        )
        entries.sort(key=lambda entry: entry[0])
        return [callback for _, callback in entries]

    async def publish(self, event: TransitionEvent) -> None:
        for callback in self._targets(event.run_id):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f"Watcher callback {callback!r} failed for run {event.run_id} "
                    f"(step={event.step_id}, status={event.status})"
                )
