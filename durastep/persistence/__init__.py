"""Persistence layer for durastep run snapshots."""

from __future__ import annotations

import os
from typing import Optional

from ..config import DurastepConfig, load_config
from .inmemory import InMemorySnapshotStore
from .sqlite import SQLiteSnapshotStore
from .store import SnapshotStore

_store_instance: SnapshotStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[DurastepConfig] = None
) -> SnapshotStore:
    """Factory function to obtain a snapshot store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``DURASTEP_DATABASE_URL``, or from
    loaded configuration. When no database is configured, an in-memory store
    is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("DURASTEP_DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemorySnapshotStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteSnapshotStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresSnapshotStore

        _store_instance = PostgresSnapshotStore(database_url)
    elif database_url in ("redis", "redis://"):
        from .redis import RedisSnapshotStore

        # host settings come from the redis section of the config
        redis_conf = config.redis
        _store_instance = RedisSnapshotStore(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    elif database_url.startswith("redis://") or database_url.startswith("rediss://"):
        from .redis import RedisSnapshotStore

        _store_instance = RedisSnapshotStore.from_url(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "SnapshotStore",
    "InMemorySnapshotStore",
    "SQLiteSnapshotStore",
    "get_store",
]
