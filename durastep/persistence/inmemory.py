"""In-memory implementation of the snapshot store."""

from __future__ import annotations

from typing import Dict

from ..codec import decode_snapshot, encode_snapshot
from ..contracts import RunSnapshot
from ..errors import NotFoundError
from .store import SnapshotStore


class InMemorySnapshotStore(SnapshotStore):
    """Store snapshots in local memory.

    Useful for tests or when no database is configured. Snapshots are kept in
    encoded form so callers never share state with the store, but nothing
    survives a process restart.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, str] = {}

    async def save(self, run_id: str, snapshot: RunSnapshot) -> None:
        self._documents[run_id] = encode_snapshot(snapshot)

    async def load(self, run_id: str) -> RunSnapshot:
        document = self._documents.get(run_id)
        if document is None:
            raise NotFoundError(run_id)
        return decode_snapshot(document)

    async def list_runs(self) -> list[RunSnapshot]:
        return [decode_snapshot(document) for document in self._documents.values()]

    async def purge(self, run_id: str) -> None:
        self._documents.pop(run_id, None)
