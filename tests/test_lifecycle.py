from __future__ import annotations

import subprocess

import pytest

from tenant_restore.pipeline.lifecycle import (
    LifecycleTracker,
    ProcessController,
    SchemaMigrationRunner,
    migrate_schema,
    run_command,
    start_services,
    stop_services,
)
from tenant_restore.utils.error_taxonomy import LifecycleError
from tests.fakes import FakeMigrationRunner, FakeProcessController


class RecordingRunner:
    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.commands: list[list[str]] = []

    def __call__(self, args, **kwargs) -> subprocess.CompletedProcess:
        self.commands.append(list(args))
        return subprocess.CompletedProcess(args, self.returncode, stdout="ok\n", stderr="")


def test_tracker_moves_forward_and_fails_from_anywhere() -> None:
    tracker = LifecycleTracker()
    for state in ("MUTATING", "MIGRATING_SCHEMA", "RUNNING", "BOOTSTRAPPING", "DONE"):
        tracker.advance(state)
    assert tracker.state == "DONE"

    tracker = LifecycleTracker()
    tracker.advance("MUTATING")
    tracker.advance("FAILED")
    tracker.advance("FAILED")
    assert tracker.history == ["STOPPED", "MUTATING", "FAILED"]

    with pytest.raises(LifecycleError):
        tracker.advance("RUNNING")


def test_tracker_rejects_skipping_states() -> None:
    tracker = LifecycleTracker()
    with pytest.raises(LifecycleError):
        tracker.advance("RUNNING")


def test_process_controller_runs_configured_commands() -> None:
    runner = RecordingRunner()
    controller = ProcessController(
        stop_command="pm2 stop all",
        start_command="pm2 start ecosystem.config.js",
        status_command="pm2 status",
        runner=runner,
    )

    assert controller.stop_all().succeeded is True
    assert controller.start_all().output == "ok"
    assert runner.commands == [
        ["pm2", "stop", "all"],
        ["pm2", "start", "ecosystem.config.js"],
    ]


def test_run_command_reports_missing_executable() -> None:
    def _missing(args, **kwargs):
        raise FileNotFoundError(f"No such file or directory: '{args[0]}'")

    result = run_command("pm2 stop all", runner=_missing)

    assert result.succeeded is False
    assert result.returncode == -1


def test_migration_failure_is_fatal() -> None:
    runner = SchemaMigrationRunner(command="npm run migrate", runner=RecordingRunner(returncode=2))

    with pytest.raises(LifecycleError):
        migrate_schema(runner)

    migrate_schema(FakeMigrationRunner(ok=True))


def test_stop_and_start_failures_are_fatal() -> None:
    with pytest.raises(LifecycleError):
        stop_services(FakeProcessController(stop_ok=False))
    with pytest.raises(LifecycleError):
        start_services(FakeProcessController(start_ok=False))

    controller = FakeProcessController()
    start_services(controller)
    assert controller.calls == ["start", "status"]
