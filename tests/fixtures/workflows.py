"""Workflows shared by the test-suite."""

from __future__ import annotations

from pydantic import BaseModel

from durastep import Orchestrator, PhasedStep, WorkflowDefinition
from durastep.config import DurastepConfig
from durastep.persistence import InMemorySnapshotStore


def fetch_value(ctx):
    return {"v": 5}


def check_threshold(ctx):
    v = ctx.inputs["v"]
    if v < 100:
        ctx.suspend({"reason": "v below threshold", "v": v})
    return {"v": v, "accepted": True}


def build_threshold_workflow(name: str = "threshold") -> WorkflowDefinition:
    return (
        WorkflowDefinition(name)
        .step(fetch_value, "stepA")
        .step(check_threshold, "stepB")
        .commit()
    )


class TwoApprovals(PhasedStep):
    """Collects a manager and then a director approval."""

    phases = ("request_manager", "request_director", "finalize")

    def request_manager(self, ctx):
        ctx.suspend({"awaiting": "manager"})

    def request_director(self, ctx):
        ctx.locals["manager"] = ctx.resume_data["approver"]
        ctx.suspend({"awaiting": "director"})

    def finalize(self, ctx):
        return {
            "manager": ctx.locals["manager"],
            "director": ctx.resume_data["approver"],
        }


def build_two_approvals_workflow(name: str = "two-approvals") -> WorkflowDefinition:
    return WorkflowDefinition(name).step(TwoApprovals, "approve").commit()


class OrderRequest(BaseModel):
    order_id: str
    amount: int


def build_orchestrator(store=None, **engine) -> Orchestrator:
    config = DurastepConfig(engine=engine) if engine else DurastepConfig()
    orchestrator = Orchestrator(store=store or InMemorySnapshotStore(), config=config)
    orchestrator.register(build_threshold_workflow())
    orchestrator.register(build_two_approvals_workflow())
    return orchestrator


orchestrator = build_orchestrator()
