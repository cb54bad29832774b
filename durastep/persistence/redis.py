"""Redis implementation of the snapshot store."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..codec import decode_snapshot, encode_snapshot
from ..constants import REDIS_KEY_PREFIX
from ..contracts import RunSnapshot
from ..errors import NotFoundError, StorageError
from .store import SnapshotStore


class RedisSnapshotStore(SnapshotStore):
    """Key-value snapshot store backed by Redis.

    Each run is one string key; a set tracks known run ids for listing.
    Durability depends on the server's persistence settings.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = REDIS_KEY_PREFIX,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    @classmethod
    def from_url(cls, url: str) -> "RedisSnapshotStore":
        store = cls()
        store._redis = redis.Redis.from_url(url, decode_responses=True)
        return store

    def _key(self, run_id: str) -> str:
        return f"{self.prefix}:run:{run_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}:runs"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            try:
                await self.connect()
            except (OSError, RedisError) as e:
                raise StorageError(f"Cannot connect to Redis store: {e}") from e
        return self._redis

    async def save(self, run_id: str, snapshot: RunSnapshot) -> None:
        document = encode_snapshot(snapshot)
        client = await self._client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._key(run_id), document)
                pipe.sadd(self._index_key, run_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to save run {run_id}: {e}") from e

    async def load(self, run_id: str) -> RunSnapshot:
        client = await self._client()
        try:
            document = await client.get(self._key(run_id))
        except RedisError as e:
            raise StorageError(f"Failed to load run {run_id}: {e}") from e
        if document is None:
            raise NotFoundError(run_id)
        return decode_snapshot(document)

    async def list_runs(self) -> list[RunSnapshot]:
        client = await self._client()
        try:
            run_ids = sorted(await client.smembers(self._index_key))
            documents = (
                await client.mget([self._key(run_id) for run_id in run_ids])
                if run_ids
                else []
            )
        except RedisError as e:
            raise StorageError(f"Failed to list runs: {e}") from e
        return [decode_snapshot(doc) for doc in documents if doc is not None]

    async def purge(self, run_id: str) -> None:
        client = await self._client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(run_id))
                pipe.srem(self._index_key, run_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to purge run {run_id}: {e}") from e
