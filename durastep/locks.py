"""Per-run mutual exclusion for start/resume."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Literal

from .constants import DEFAULT_BUSY_POLICY
from .errors import RunBusyError

logger = logging.getLogger(__name__)

BusyPolicy = Literal["queue", "reject"]


class RunLockManager:
    """Grants one holder at a time the right to advance a run.

    With ``policy="queue"`` a second caller waits its turn; with
    ``policy="reject"`` it fails immediately with ``RunBusyError``. Locks only
    cover the current process.
    """

    def __init__(self, policy: BusyPolicy = DEFAULT_BUSY_POLICY) -> None:
        if policy not in ("queue", "reject"):
            raise ValueError(f"Unsupported busy policy: {policy}")
        self.policy = policy
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def is_busy(self, run_id: str) -> bool:
        lock = self._locks.get(run_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, run_id: str) -> AsyncIterator[None]:
        if self.policy == "reject" and self.is_busy(run_id):
            raise RunBusyError(f"Run {run_id} is already being advanced", run_id)

        lock = self._locks.setdefault(run_id, asyncio.Lock())
        self._users[run_id] = self._users.get(run_id, 0) + 1
        try:
            if lock.locked():
                logger.info(f"Run {run_id} is busy; waiting for the current holder")
            async with lock:
                yield
        finally:
            self._users[run_id] -= 1
            if self._users[run_id] == 0:
                del self._users[run_id]
                del self._locks[run_id]
