"""Runs suspended by one orchestrator and resumed by another over SQLite."""

import pytest

from durastep import RunStatus, StepStatus, WorkflowDefinition
from durastep.persistence import SQLiteSnapshotStore
from tests.fixtures.workflows import build_orchestrator


def _ingest(ctx):
    return {"documents": ctx.inputs["documents"], "chunks": len(ctx.inputs["documents"]) * 2}


def _review(ctx):
    if not ctx.resumed:
        ctx.suspend({"chunks": ctx.inputs["chunks"], "question": "publish?"})
    if not ctx.resume_data.get("approved"):
        raise PermissionError(f"rejected by {ctx.resume_data.get('reviewer')}")
    return {"reviewer": ctx.resume_data["reviewer"], "chunks": ctx.inputs["chunks"]}


def _publish(ctx):
    return {"published": ctx.inputs["chunks"], "by": ctx.inputs["reviewer"]}


def _index(ctx):
    return {"indexed": ctx.inputs["chunks"]}


def build_pipeline():
    return (
        WorkflowDefinition("publish-docs")
        .step(_ingest, "ingest")
        .step(_review, "review")
        .step(_publish, "publish")
        .step(_index, "index", after="ingest")
    )


def _orchestrator(path):
    orchestrator = build_orchestrator(store=SQLiteSnapshotStore(path))
    orchestrator.register(build_pipeline())
    return orchestrator


@pytest.mark.asyncio
async def test_suspend_in_one_orchestrator_resume_in_another(tmp_path):
    path = tmp_path / "runs.db"

    first = _orchestrator(path)
    run = first.create_run("publish-docs", run_id="docs-1")
    results = await run.start({"documents": ["a.md", "b.md"]})
    assert results["review"].status == StepStatus.SUSPENDED
    assert results["review"].suspend_payload == {"chunks": 4, "question": "publish?"}
    assert results["index"].status == StepStatus.SUCCESS
    assert results["publish"].status == StepStatus.PENDING

    second = _orchestrator(path)
    snapshot = await second.resume("docs-1", "review", {"approved": True, "reviewer": "kim"})

    assert snapshot.step_results["publish"].output == {"published": 4, "by": "kim"}
    assert snapshot.status == RunStatus.COMPLETED
    assert (await second.store.load("docs-1")) == snapshot


@pytest.mark.asyncio
async def test_rejected_review_fails_only_downstream(tmp_path):
    orchestrator = _orchestrator(tmp_path / "runs.db")
    run = orchestrator.create_run("publish-docs")
    await run.start({"documents": ["a.md"]})

    results = await run.resume("review", {"approved": False, "reviewer": "lee"})

    assert results["review"].status == StepStatus.FAILED
    assert results["review"].error.type == "PermissionError"
    assert results["publish"].status == StepStatus.PENDING
    assert results["index"].status == StepStatus.SUCCESS
    assert run.skipped_steps == {"publish"}
    assert run.status == RunStatus.FAILED
