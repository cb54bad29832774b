"""PostgreSQL implementation of the snapshot store."""

from __future__ import annotations

import asyncpg

from ..codec import decode_snapshot, encode_snapshot
from ..contracts import RunSnapshot
from ..errors import NotFoundError, StorageError
from .store import SnapshotStore


class PostgresSnapshotStore(SnapshotStore):
    """Persist run snapshots using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except (OSError, asyncpg.PostgresError) as e:
            raise StorageError(f"Cannot connect to PostgreSQL store: {e}") from e
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS run_snapshots (
                run_id TEXT PRIMARY KEY,
                workflow_name TEXT NOT NULL,
                status TEXT NOT NULL,
                snapshot JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save(self, run_id: str, snapshot: RunSnapshot) -> None:
        document = encode_snapshot(snapshot)
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO run_snapshots (run_id, workflow_name, status, snapshot, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, $5)
                ON CONFLICT (run_id) DO UPDATE SET
                    workflow_name = EXCLUDED.workflow_name,
                    status = EXCLUDED.status,
                    snapshot = EXCLUDED.snapshot,
                    updated_at = EXCLUDED.updated_at
                """,
                run_id,
                snapshot.workflow_name,
                snapshot.status.value,
                document,
                snapshot.updated_at,
            )
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to save run {run_id}: {e}") from e
        finally:
            await conn.close()

    async def load(self, run_id: str) -> RunSnapshot:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT snapshot FROM run_snapshots WHERE run_id = $1", run_id
            )
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to load run {run_id}: {e}") from e
        finally:
            await conn.close()
        if not row:
            raise NotFoundError(run_id)
        return decode_snapshot(row["snapshot"])

    async def list_runs(self) -> list[RunSnapshot]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT snapshot FROM run_snapshots ORDER BY updated_at"
            )
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to list runs: {e}") from e
        finally:
            await conn.close()
        return [decode_snapshot(r["snapshot"]) for r in rows]

    async def purge(self, run_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute("DELETE FROM run_snapshots WHERE run_id = $1", run_id)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to purge run {run_id}: {e}") from e
        finally:
            await conn.close()
