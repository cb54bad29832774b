"""Suspend/resume protocol tests."""

import asyncio

import pytest

from durastep import (
    NotSuspendedError,
    PhasedStep,
    RunAlreadyStartedError,
    RunBusyError,
    RunStatus,
    StepStatus,
    UnknownRunError,
    WorkflowDefinition,
)
from durastep.persistence import InMemorySnapshotStore
from tests.fixtures.workflows import build_orchestrator


@pytest.mark.asyncio
async def test_resume_completes_threshold_step_with_merged_context():
    orchestrator = build_orchestrator()
    run = orchestrator.create_run("threshold")
    await run.start()

    results = await orchestrator.resume(run.run_id, "stepB", {"v": 150})

    assert results.step_results["stepB"].status == StepStatus.SUCCESS
    assert results.step_results["stepB"].output == {"v": 150, "accepted": True}
    assert results.active_paths == set()
    assert results.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_resume_with_insufficient_context_suspends_again():
    orchestrator = build_orchestrator()
    run = orchestrator.create_run("threshold")
    await run.start()

    results = await run.resume("stepB", {"v": 50})

    assert results["stepB"].status == StepStatus.SUSPENDED
    assert results["stepB"].suspend_payload == {"reason": "v below threshold", "v": 50}
    assert run.snapshot.continuations["stepB"].sequence == 2


@pytest.mark.asyncio
async def test_two_suspension_points_need_two_resumes():
    orchestrator = build_orchestrator()
    run = orchestrator.create_run("two-approvals")

    results = await run.start()
    assert results["approve"].suspend_payload == {"awaiting": "manager"}

    results = await run.resume("approve", {"approver": "ann"})
    assert results["approve"].status == StepStatus.SUSPENDED
    assert results["approve"].suspend_payload == {"awaiting": "director"}
    token = run.snapshot.continuations["approve"]
    assert token.label == "finalize"
    assert token.locals == {"manager": "ann"}

    results = await run.resume("approve", {"approver": "dan"})
    assert results["approve"].status == StepStatus.SUCCESS
    assert results["approve"].output == {"manager": "ann", "director": "dan"}
    assert "approve" not in run.snapshot.continuations


@pytest.mark.asyncio
async def test_resume_matches_uninterrupted_execution():
    calls = []

    class Quote(PhasedStep):
        phases = ("price", "confirm")

        def price(self, ctx):
            calls.append("price")
            quote = ctx.inputs["qty"] * 3
            if ctx.inputs.get("auto_confirm") is None:
                ctx.locals["quote"] = quote
                ctx.suspend({"quote": quote})
            return quote

        def confirm(self, ctx):
            calls.append("confirm")
            quote = ctx.locals.get("price", ctx.locals.get("quote"))
            return {"quote": quote, "confirmed": ctx.inputs["auto_confirm"]}

    orchestrator = build_orchestrator()
    orchestrator.register(WorkflowDefinition("quote").step(Quote, "quote"))

    uninterrupted = orchestrator.create_run("quote")
    await uninterrupted.start({"qty": 2, "auto_confirm": "yes"})

    calls.clear()
    interrupted = orchestrator.create_run("quote")
    await interrupted.start({"qty": 2})
    await interrupted.resume("quote", {"auto_confirm": "yes"})

    assert interrupted.output("quote") == uninterrupted.output("quote")
    assert calls == ["price", "confirm"]


@pytest.mark.asyncio
async def test_resume_unknown_run_fails():
    orchestrator = build_orchestrator()
    with pytest.raises(UnknownRunError):
        await orchestrator.resume("missing", "stepB", {})


@pytest.mark.asyncio
async def test_resume_step_that_is_not_suspended_leaves_state_unchanged():
    store = InMemorySnapshotStore()
    orchestrator = build_orchestrator(store=store)
    run = orchestrator.create_run("threshold")
    await run.start()
    before = await store.load(run.run_id)

    with pytest.raises(NotSuspendedError) as excinfo:
        await run.resume("stepA", {"v": 1})
    assert excinfo.value.step_id == "stepA"

    with pytest.raises(NotSuspendedError):
        await run.resume("no-such-step", {})

    assert await store.load(run.run_id) == before


@pytest.mark.asyncio
async def test_second_resume_of_completed_step_fails():
    orchestrator = build_orchestrator()
    run = orchestrator.create_run("threshold")
    await run.start()
    await run.resume("stepB", {"v": 150})

    with pytest.raises(NotSuspendedError):
        await run.resume("stepB", {"v": 150})


@pytest.mark.asyncio
async def test_concurrent_resumes_of_same_run_are_serialized():
    gate = asyncio.Event()
    order = []

    async def waiter(ctx):
        if not ctx.resumed:
            ctx.suspend({"step": ctx.step_id})
        order.append(f"{ctx.step_id}:enter")
        if ctx.step_id == "left":
            await gate.wait()
        order.append(f"{ctx.step_id}:exit")
        return {ctx.step_id: ctx.resume_data["value"]}

    orchestrator = build_orchestrator()
    orchestrator.register(
        WorkflowDefinition("pair")
        .step(waiter, "left", after=())
        .step(waiter, "right", after=())
    )
    run = orchestrator.create_run("pair")
    await run.start()

    first = asyncio.create_task(orchestrator.resume(run.run_id, "left", {"value": 1}))
    await asyncio.sleep(0.01)
    second = asyncio.create_task(orchestrator.resume(run.run_id, "right", {"value": 2}))
    await asyncio.sleep(0.01)
    assert order == ["left:enter"]

    gate.set()
    await first
    final = await second

    assert order == ["left:enter", "left:exit", "right:enter", "right:exit"]
    assert final.step_results["left"].status == StepStatus.SUCCESS
    assert final.step_results["right"].output == {"right": 2}
    assert final.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_reject_policy_raises_run_busy():
    gate = asyncio.Event()

    async def blocker(ctx):
        if not ctx.resumed:
            ctx.suspend()
        await gate.wait()
        return {}

    orchestrator = build_orchestrator(busy_policy="reject")
    orchestrator.register(
        WorkflowDefinition("busy")
        .step(blocker, "one", after=())
        .step(blocker, "two", after=())
    )
    run = orchestrator.create_run("busy")
    await run.start()

    first = asyncio.create_task(run.resume("one", {}))
    await asyncio.sleep(0.01)
    with pytest.raises(RunBusyError):
        await orchestrator.resume(run.run_id, "two", {})

    gate.set()
    await first
    results = await run.resume("two", {})
    assert results["two"].status == StepStatus.SUCCESS


@pytest.mark.asyncio
async def test_resume_from_fresh_orchestrator_sharing_store():
    store = InMemorySnapshotStore()
    first = build_orchestrator(store=store)
    run = first.create_run("two-approvals", run_id="wf-1")
    await run.start()
    await run.resume("approve", {"approver": "ann"})

    second = build_orchestrator(store=store)
    handle = await second.get_run("wf-1")
    assert handle.status == RunStatus.SUSPENDED

    results = await handle.resume("approve", {"approver": "dan"})
    assert results["approve"].output == {"manager": "ann", "director": "dan"}


@pytest.mark.asyncio
async def test_start_twice_with_same_run_id_is_rejected():
    orchestrator = build_orchestrator()
    await orchestrator.create_run("threshold", run_id="dup").start()
    with pytest.raises(RunAlreadyStartedError):
        await orchestrator.create_run("threshold", run_id="dup").start()
