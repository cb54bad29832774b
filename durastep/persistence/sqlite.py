"""SQLite implementation of the snapshot store."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..codec import decode_snapshot, encode_snapshot
from ..contracts import RunSnapshot
from ..errors import NotFoundError, StorageError
from .store import SnapshotStore


class SQLiteSnapshotStore(SnapshotStore):
    """Persist run snapshots using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open SQLite store at {self.db_path}: {e}") from e

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS run_snapshots (
                run_id TEXT PRIMARY KEY,
                workflow_name TEXT NOT NULL,
                status TEXT NOT NULL,
                snapshot TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    async def _run(self, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite store error: {e}") from e

    # ------------------------------------------------------------------
    # Store API
    async def save(self, run_id: str, snapshot: RunSnapshot) -> None:
        document = encode_snapshot(snapshot)
        await self._run(
            self._execute,
            """
            INSERT INTO run_snapshots (run_id, workflow_name, status, snapshot, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                workflow_name = excluded.workflow_name,
                status = excluded.status,
                snapshot = excluded.snapshot,
                updated_at = excluded.updated_at
            """,
            run_id,
            snapshot.workflow_name,
            snapshot.status.value,
            document,
            snapshot.updated_at.isoformat(),
        )

    async def load(self, run_id: str) -> RunSnapshot:
        row = await self._run(
            self._fetchone,
            "SELECT snapshot FROM run_snapshots WHERE run_id = ?",
            run_id,
        )
        if not row:
            raise NotFoundError(run_id)
        return decode_snapshot(row["snapshot"])

    async def list_runs(self) -> list[RunSnapshot]:
        rows = await self._run(
            self._fetchall,
            "SELECT snapshot FROM run_snapshots ORDER BY updated_at",
        )
        return [decode_snapshot(r["snapshot"]) for r in rows]

    async def purge(self, run_id: str) -> None:
        await self._run(
            self._execute, "DELETE FROM run_snapshots WHERE run_id = ?", run_id
        )

    def close(self) -> None:
        self._conn.close()
