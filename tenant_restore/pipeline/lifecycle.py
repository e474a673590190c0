from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Protocol

import httpx

from tenant_restore.logging import get_logger
from tenant_restore.utils.error_taxonomy import BootstrapError, LifecycleError
from tenant_restore.utils.retry import RetryOutcome, run_with_fixed_delay

logger = get_logger("lifecycle")

LifecycleState = Literal[
    "STOPPED",
    "MUTATING",
    "MIGRATING_SCHEMA",
    "RUNNING",
    "BOOTSTRAPPING",
    "DONE",
    "FAILED",
]

_ALLOWED_TRANSITIONS: dict[LifecycleState, set[LifecycleState]] = {
    "STOPPED": {"MUTATING"},
    "MUTATING": {"MIGRATING_SCHEMA"},
    "MIGRATING_SCHEMA": {"RUNNING"},
    "RUNNING": {"BOOTSTRAPPING"},
    "BOOTSTRAPPING": {"DONE"},
    "DONE": set(),
    "FAILED": set(),
}


class LifecycleTracker:
    """Forward-only lifecycle state; ``FAILED`` is reachable from anywhere and absorbing."""

    def __init__(self, initial: LifecycleState = "STOPPED") -> None:
        self.state: LifecycleState = initial
        self.history: list[LifecycleState] = [initial]

    def advance(self, target: LifecycleState) -> None:
        if target == self.state:
            return
        if target == "FAILED":
            if self.state != "FAILED":
                self._set(target)
            return
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise LifecycleError(f"Illegal lifecycle transition {self.state} -> {target}")
        self._set(target)

    def _set(self, target: LifecycleState) -> None:
        self.state = target
        self.history.append(target)


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: str
    succeeded: bool
    returncode: int
    output: str


Runner = Callable[..., subprocess.CompletedProcess]


def run_command(command: str, *, cwd: Path | None = None, runner: Runner = subprocess.run) -> CommandResult:
    try:
        completed = runner(
            shlex.split(command),
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as error:
        return CommandResult(command=command, succeeded=False, returncode=-1, output=str(error))
    output = (completed.stdout or "") + (completed.stderr or "")
    return CommandResult(
        command=command,
        succeeded=completed.returncode == 0,
        returncode=completed.returncode,
        output=output.strip(),
    )


class ProcessController:
    def __init__(
        self,
        *,
        stop_command: str,
        start_command: str,
        status_command: str,
        cwd: Path | None = None,
        runner: Runner = subprocess.run,
    ) -> None:
        self.stop_command = stop_command
        self.start_command = start_command
        self.status_command = status_command
        self.cwd = cwd
        self.runner = runner

    def stop_all(self) -> CommandResult:
        return run_command(self.stop_command, cwd=self.cwd, runner=self.runner)

    def start_all(self) -> CommandResult:
        return run_command(self.start_command, cwd=self.cwd, runner=self.runner)

    def status(self) -> CommandResult:
        return run_command(self.status_command, cwd=self.cwd, runner=self.runner)


class SchemaMigrationRunner:
    def __init__(
        self,
        *,
        command: str,
        cwd: Path | None = None,
        runner: Runner = subprocess.run,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.runner = runner

    def run(self) -> CommandResult:
        return run_command(self.command, cwd=self.cwd, runner=self.runner)


class ProcessControllerProtocol(Protocol):
    def stop_all(self) -> CommandResult: ...

    def start_all(self) -> CommandResult: ...

    def status(self) -> CommandResult: ...


class MigrationRunnerProtocol(Protocol):
    def run(self) -> CommandResult: ...


class BootstrapClientProtocol(Protocol):
    def add_support_account(self) -> None: ...


class BootstrapClient:
    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def add_support_account(self) -> None:
        with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = client.post(self.url)
            response.raise_for_status()


def stop_services(controller: ProcessControllerProtocol) -> None:
    result = controller.stop_all()
    if not result.succeeded:
        raise LifecycleError(
            f"Stopping services failed ({result.command}, exit {result.returncode}): "
            f"{result.output}"
        )
    logger.info("Services stopped")


def migrate_schema(runner: MigrationRunnerProtocol) -> None:
    result = runner.run()
    if not result.succeeded:
        raise LifecycleError(
            f"Schema migration failed ({result.command}, exit {result.returncode}): "
            f"{result.output}"
        )
    logger.info("Schema migration completed")


def start_services(controller: ProcessControllerProtocol) -> None:
    result = controller.start_all()
    if not result.succeeded:
        raise LifecycleError(
            f"Starting services failed ({result.command}, exit {result.returncode}): "
            f"{result.output}"
        )
    status = controller.status()
    logger.info("Services started", extra={"metrics": {"status": status.output}})


def bootstrap(
    client: BootstrapClientProtocol,
    *,
    max_attempts: int,
    delay_seconds: float,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> RetryOutcome[None]:
    def _on_failure(attempt: int, error: Exception) -> None:
        logger.warning(f"Support account bootstrap attempt {attempt}/{max_attempts} failed: {error}")

    outcome = run_with_fixed_delay(
        operation=client.add_support_account,
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        sleep_fn=sleep_fn,
        on_failure=_on_failure,
    )
    if not outcome.succeeded:
        raise BootstrapError(
            f"Support account bootstrap failed after {outcome.attempts} attempts: "
            f"{outcome.last_error}",
            attempts=outcome.attempts,
        )
    logger.info(f"Support account bootstrapped after {outcome.attempts} attempt(s)")
    return outcome
