"""Snapshot store abstraction."""

from __future__ import annotations

from typing import Protocol

from ..contracts import RunSnapshot


class SnapshotStore(Protocol):
    """Durable persistence of run snapshots keyed by run id.

    Implementations raise ``StorageError`` on I/O failure and
    ``NotFoundError`` when loading a run id that was never saved.
    """

    async def save(self, run_id: str, snapshot: RunSnapshot) -> None:
        """Insert or replace the snapshot stored for ``run_id``."""

    async def load(self, run_id: str) -> RunSnapshot:
        """Return the snapshot stored for ``run_id``."""

    async def list_runs(self) -> list[RunSnapshot]:
        """Return every stored snapshot."""

    async def purge(self, run_id: str) -> None:
        """Remove the snapshot for ``run_id`` if present."""
