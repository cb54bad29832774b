"""Command line interface for inspecting and resuming durastep runs."""

from __future__ import annotations

import asyncio
import importlib
import json
from typing import Optional

import typer

from durastep.config import load_config
from durastep.errors import DurastepError, NotFoundError, UnknownRunError
from durastep.persistence import get_store
from durastep.runtime import Orchestrator
from durastep.utils.log import configure_logging

app = typer.Typer(help="CLI for durastep runs")

run_app = typer.Typer(help="Commands for inspecting and resuming runs")
app.add_typer(run_app, name="run")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Logging level, e.g. DEBUG"),
) -> None:
    """Durastep CLI entry point."""
    configure_logging(log_level or load_config().log_level)


@run_app.command("list")
def run_list() -> None:
    """
    List stored runs with their workflow and derived status.

    Example:
        durastep run list
        # Output: 3f2a...    approval    suspended
    """
    store = get_store()
    runs = asyncio.run(store.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for snapshot in runs:
        typer.echo(f"{snapshot.run_id}\t{snapshot.workflow_name}\t{snapshot.status.value}")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """
    Show step statuses, outputs and suspend payloads for one run.

    Example:
        durastep run show 3f2a...
        # Output: Run 3f2a... (approval): suspended
        #         Active paths: review
        #         - fetch: success -> {"v": 5}
        #         - review: suspended (payload: {"reason": "needs approval"})
    """
    store = get_store()
    try:
        snapshot = asyncio.run(store.load(run_id))
    except NotFoundError:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    except DurastepError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Run {snapshot.run_id} ({snapshot.workflow_name}): {snapshot.status.value}")
    typer.echo(f"Trigger: {json.dumps(snapshot.trigger_data)}")
    active = ", ".join(sorted(snapshot.active_paths)) or "-"
    typer.echo(f"Active paths: {active}")
    for step_id, result in snapshot.step_results.items():
        line = f"- {step_id}: {result.status.value}"
        if result.output is not None:
            line += f" -> {json.dumps(result.output)}"
        if result.suspend_payload is not None:
            line += f" (payload: {json.dumps(result.suspend_payload)})"
        if result.error is not None:
            line += f" [{result.error.type}: {result.error.message}]"
        typer.echo(line)


def _load_orchestrator(target: str) -> Orchestrator:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter("Expected MODULE:ATTRIBUTE", param_hint="target")
    module = importlib.import_module(module_name)
    orchestrator = getattr(module, attr, None)
    if not isinstance(orchestrator, Orchestrator):
        raise typer.BadParameter(
            f"{target} is not an Orchestrator instance", param_hint="target"
        )
    return orchestrator


@run_app.command("resume")
def run_resume(
    target: str,
    run_id: str,
    step_id: str,
    context: str = typer.Option("{}", help="JSON object merged into the step input"),
) -> None:
    """
    Resume a suspended step using an orchestrator importable as MODULE:ATTRIBUTE.

    Example:
        durastep run resume myapp.workflows:orchestrator 3f2a... review --context '{"approved": true}'
    """
    try:
        resume_context = json.loads(context)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Invalid JSON: {e}", param_hint="--context")
    if not isinstance(resume_context, dict):
        raise typer.BadParameter("Context must be a JSON object", param_hint="--context")

    orchestrator = _load_orchestrator(target)
    try:
        snapshot = asyncio.run(orchestrator.resume(run_id, step_id, resume_context))
    except UnknownRunError:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    except DurastepError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    result = snapshot.step_results[step_id]
    typer.echo(f"{step_id}: {result.status.value}")
    typer.echo(f"Run {snapshot.run_id}: {snapshot.status.value}")


if __name__ == "__main__":
    app()
