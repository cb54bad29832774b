"""Snapshot store tests."""

import pytest

import durastep.persistence as persistence
from durastep.config import DurastepConfig
from durastep.contracts import RunSnapshot, StepResult, StepStatus
from durastep.errors import NotFoundError
from durastep.persistence import InMemorySnapshotStore, SQLiteSnapshotStore, get_store


def _snapshot(run_id="run-1", status=StepStatus.PENDING):
    return RunSnapshot(
        run_id=run_id,
        workflow_name="wf",
        trigger_data={"seed": 1},
        step_results={"a": StepResult(status=status)},
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySnapshotStore()
    return SQLiteSnapshotStore(tmp_path / "runs.db")


@pytest.mark.asyncio
async def test_store_save_load_and_replace(store):
    snapshot = _snapshot()
    await store.save("run-1", snapshot)
    assert await store.load("run-1") == snapshot

    snapshot.step_results["a"] = StepResult(status=StepStatus.RUNNING)
    snapshot.active_paths.add("a")
    await store.save("run-1", snapshot)

    loaded = await store.load("run-1")
    assert loaded == snapshot
    assert loaded.active_paths == {"a"}
    assert len(await store.list_runs()) == 1


@pytest.mark.asyncio
async def test_store_load_missing_raises_not_found(store):
    with pytest.raises(NotFoundError) as excinfo:
        await store.load("missing")
    assert excinfo.value.run_id == "missing"


@pytest.mark.asyncio
async def test_store_purge(store):
    await store.save("run-1", _snapshot("run-1"))
    await store.save("run-2", _snapshot("run-2"))
    await store.purge("run-1")

    assert [s.run_id for s in await store.list_runs()] == ["run-2"]
    await store.purge("run-1")


@pytest.mark.asyncio
async def test_loaded_snapshot_is_not_aliased(store):
    snapshot = _snapshot()
    await store.save("run-1", snapshot)
    loaded = await store.load("run-1")
    loaded.trigger_data["seed"] = 99
    assert (await store.load("run-1")).trigger_data == {"seed": 1}


@pytest.mark.asyncio
async def test_sqlite_store_survives_reopen(tmp_path):
    path = tmp_path / "runs.db"
    first = SQLiteSnapshotStore(path)
    await first.save("run-1", _snapshot())
    first.close()

    reopened = SQLiteSnapshotStore(path)
    assert (await reopened.load("run-1")).workflow_name == "wf"


def test_get_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("DURASTEP_DATABASE_URL", raising=False)
    monkeypatch.setattr(persistence, "_store_instance", None)

    assert isinstance(get_store(config=DurastepConfig()), InMemorySnapshotStore)

    sqlite_store = get_store(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_store, SQLiteSnapshotStore)
    assert get_store() is sqlite_store

    with pytest.raises(ValueError):
        get_store("mysql://nope")


def test_get_store_reads_env(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_store_instance", None)
    monkeypatch.setenv("DURASTEP_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    assert isinstance(get_store(config=DurastepConfig()), SQLiteSnapshotStore)
