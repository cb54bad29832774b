import asyncio

from typer.testing import CliRunner

import durastep.persistence as persistence
from durastep.cli import app
from tests.fixtures import workflows


def _use_store(store) -> None:
    persistence._store_instance = store


def test_run_list_shows_runs():
    orchestrator = workflows.build_orchestrator()
    _use_store(orchestrator.store)
    first = orchestrator.create_run("threshold", run_id="run-a")
    second = orchestrator.create_run("two-approvals", run_id="run-b")
    asyncio.run(first.start())
    asyncio.run(second.start())

    runner = CliRunner()
    result = runner.invoke(app, ["run", "list"])
    assert result.exit_code == 0, result.output
    assert "run-a\tthreshold\tsuspended" in result.output
    assert "run-b\ttwo-approvals\tsuspended" in result.output


def test_run_list_empty():
    _use_store(persistence.InMemorySnapshotStore())
    result = CliRunner().invoke(app, ["run", "list"])
    assert result.exit_code == 0
    assert "No runs found" in result.output


def test_run_show_details_and_missing():
    orchestrator = workflows.build_orchestrator()
    _use_store(orchestrator.store)
    run = orchestrator.create_run("threshold", run_id="run-show")
    asyncio.run(run.start({"source": "cli"}))

    runner = CliRunner()
    result = runner.invoke(app, ["run", "show", "run-show"])
    assert result.exit_code == 0, result.output
    assert "Run run-show (threshold): suspended" in result.output
    assert "Active paths: stepB" in result.output
    assert '- stepA: success -> {"v": 5}' in result.output
    assert "- stepB: suspended (payload:" in result.output

    missing = runner.invoke(app, ["run", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Run not found" in missing.output


def test_run_show_reports_unreadable_snapshot():
    store = persistence.InMemorySnapshotStore()
    store._documents["run-old"] = '{"schema_version": 99, "run_id": "run-old"}'
    _use_store(store)

    result = CliRunner().invoke(app, ["run", "show", "run-old"])
    assert result.exit_code == 1
    assert "Unsupported snapshot schema version 99" in result.output
    assert "Run not found" not in result.output


def test_run_resume_through_importable_orchestrator():
    orchestrator = workflows.orchestrator
    run = orchestrator.create_run("threshold", run_id="run-cli-resume")
    asyncio.run(run.start())

    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "run",
            "resume",
            "tests.fixtures.workflows:orchestrator",
            "run-cli-resume",
            "stepB",
            "--context",
            '{"v": 150}',
        ],
    )
    assert result.exit_code == 0, result.output
    assert "stepB: success" in result.output
    assert "Run run-cli-resume: completed" in result.output

    again = runner.invoke(
        app,
        ["run", "resume", "tests.fixtures.workflows:orchestrator", "run-cli-resume", "stepB"],
    )
    assert again.exit_code == 1
    assert "not suspended" in again.output


def test_run_resume_rejects_bad_context():
    result = CliRunner().invoke(
        app,
        [
            "run",
            "resume",
            "tests.fixtures.workflows:orchestrator",
            "run-x",
            "stepB",
            "--context",
            "[1, 2]",
        ],
    )
    assert result.exit_code != 0
