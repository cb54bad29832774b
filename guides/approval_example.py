"""Example: a document pipeline that waits for a human reviewer.

Run it twice to see a run suspended by one process and resumed by another:

    DURASTEP_DATABASE_URL=sqlite://runs.db python guides/approval_example.py start
    DURASTEP_DATABASE_URL=sqlite://runs.db python guides/approval_example.py approve <run_id>
"""

import asyncio
import sys

from durastep import Orchestrator, PhasedStep, WorkflowDefinition
from durastep.utils.log import configure_logging


def chunk_documents(ctx):
    documents = ctx.inputs["documents"]
    return {"chunks": [f"{doc}#{i}" for doc in documents for i in range(2)]}


class Review(PhasedStep):
    phases = ("request", "apply")

    def request(self, ctx):
        ctx.suspend({"chunks": len(ctx.inputs["chunks"]), "question": "publish?"})

    def apply(self, ctx):
        return {"approved": bool(ctx.resume_data.get("approved"))}


def publish(ctx):
    if not ctx.inputs["approved"]:
        return {"published": 0}
    return {"published": len(ctx.inputs["chunks"])}


workflow = (
    WorkflowDefinition("publish-docs")
    .step(chunk_documents, "chunk")
    .step(Review, "review")
    .step(publish, "publish", after=("chunk", "review"))
)

orchestrator = Orchestrator()
orchestrator.register(workflow)
orchestrator.watch(lambda event: print(f"[watch] {event.step_id}: {event.status}"))


async def main() -> None:
    command = sys.argv[1]
    if command == "start":
        run = orchestrator.create_run("publish-docs")
        await run.start({"documents": ["intro.md", "setup.md"]})
        print(f"Run {run.run_id} is {run.status.value}")
    elif command == "approve":
        snapshot = await orchestrator.resume(sys.argv[2], "review", {"approved": True})
        print(snapshot.step_results["publish"].output)
    else:
        raise SystemExit(f"Unknown command: {command}")


if __name__ == "__main__":
    configure_logging("INFO")
    asyncio.run(main())
