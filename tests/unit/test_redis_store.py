import os
import uuid

import pytest

from durastep.contracts import RunSnapshot, StepResult, StepStatus
from durastep.errors import NotFoundError

pytest.importorskip("redis")

from durastep.persistence.redis import RedisSnapshotStore  # noqa: E402


def test_redis_store_defaults():
    store = RedisSnapshotStore()
    assert store.host == "localhost"
    assert store.port == 6379
    assert store._key("abc") == "durastep:run:abc"


@pytest.mark.asyncio
async def test_redis_store_round_trip():
    store = RedisSnapshotStore(host=os.getenv("TEST_REDIS_HOST", "localhost"))
    try:
        await store.connect()
    except Exception:
        pytest.skip("Redis server not available")

    run_id = str(uuid.uuid4())
    snapshot = RunSnapshot(
        run_id=run_id,
        workflow_name="wf",
        step_results={"a": StepResult(status=StepStatus.SUCCESS, output={"v": 5})},
    )
    try:
        await store.save(run_id, snapshot)
        assert await store.load(run_id) == snapshot
        assert any(s.run_id == run_id for s in await store.list_runs())
        await store.purge(run_id)
        with pytest.raises(NotFoundError):
            await store.load(run_id)
    finally:
        await store.disconnect()
