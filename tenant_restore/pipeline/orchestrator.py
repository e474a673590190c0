from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal

from tenant_restore.config.policy import RestorePolicy
from tenant_restore.logging import clear_log_context, get_logger, set_log_context
from tenant_restore.pipeline import (
    assets,
    finalizer,
    identity,
    lifecycle,
    restore,
    rotation,
    settings_sanitizer,
)
from tenant_restore.pipeline.lifecycle import (
    BootstrapClientProtocol,
    LifecycleState,
    LifecycleTracker,
    MigrationRunnerProtocol,
    ProcessControllerProtocol,
)
from tenant_restore.storage.archive import (
    ArchiveLocator,
    download_archive,
    extract_archive,
    list_dump_files,
    parse_archive_url,
)
from tenant_restore.storage.documents import Document, DocumentStore
from tenant_restore.storage.objects import ObjectStore
from tenant_restore.utils.error_taxonomy import (
    PreconditionError,
    build_error_details,
    classify_restore_error,
)

logger = get_logger("orchestrator")

RunStatus = Literal["completed", "failed"]


@dataclass(slots=True)
class RunContext:
    """State threaded through the phases of one restore run."""

    run_id: str
    archive_url: str
    bucket: str
    work_dir: Path
    local: bool = False
    locator: ArchiveLocator | None = None
    archive_file: Path | None = None
    extract_dir: Path | None = None
    pre_restore_org: Document | None = None
    tenant_id: str | None = None
    results: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Phase:
    name: str
    run: Callable[[RunContext], Any]
    state: LifecycleState | None = None
    skip_in_local: bool = False


@dataclass(frozen=True, slots=True)
class RunReport:
    run_id: str
    status: RunStatus
    state: LifecycleState
    completed_phases: list[str]
    skipped_phases: list[str]
    failed_phase: str | None
    error_code: str | None
    error_message: str | None
    results: dict[str, Any]

    @property
    def finalized(self) -> bool:
        return "finalize" in self.completed_phases


class RestoreOrchestrator:
    def __init__(
        self,
        *,
        document_store: DocumentStore,
        object_store: ObjectStore,
        process_controller: ProcessControllerProtocol,
        migration_runner: MigrationRunnerProtocol,
        bootstrap_client: BootstrapClientProtocol,
        policy: RestorePolicy,
        bucket_pattern: str,
        bootstrap_max_attempts: int = 10,
        bootstrap_delay_seconds: float = 5.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.document_store = document_store
        self.object_store = object_store
        self.process_controller = process_controller
        self.migration_runner = migration_runner
        self.bootstrap_client = bootstrap_client
        self.policy = policy
        self.bucket_pattern = bucket_pattern
        self.bootstrap_max_attempts = bootstrap_max_attempts
        self.bootstrap_delay_seconds = bootstrap_delay_seconds
        self.sleep_fn = sleep_fn

    def phases(self) -> list[Phase]:
        return [
            Phase("fetch_archive", self._fetch_archive, state="STOPPED"),
            Phase("capture_identity", self._capture_identity),
            Phase("stop_services", self._stop_services, skip_in_local=True),
            Phase("rotate", self._rotate, state="MUTATING"),
            Phase("restore", self._restore),
            Phase("merge_identity", self._merge_identity),
            Phase("reassign_organization", self._reassign_organization),
            Phase("relocate_assets", self._relocate_assets),
            Phase("sanitize_settings", self._sanitize_settings),
            Phase(
                "migrate_schema",
                self._migrate_schema,
                state="MIGRATING_SCHEMA",
                skip_in_local=True,
            ),
            Phase(
                "start_services",
                self._start_services,
                state="RUNNING",
                skip_in_local=True,
            ),
            Phase("bootstrap", self._bootstrap, state="BOOTSTRAPPING"),
            Phase("finalize", self._finalize),
        ]

    def run(
        self,
        *,
        archive_url: str,
        bucket: str,
        work_dir: Path,
        local: bool = False,
        run_id: str | None = None,
    ) -> RunReport:
        ctx = RunContext(
            run_id=run_id or uuid.uuid4().hex,
            archive_url=archive_url,
            bucket=bucket,
            work_dir=work_dir,
            local=local,
        )
        return self.execute(ctx, self.phases())

    def execute(self, ctx: RunContext, phases: list[Phase]) -> RunReport:
        """Run ``phases`` in order and stop at the first failure."""
        tracker = LifecycleTracker()
        completed: list[str] = []
        skipped: list[str] = []
        set_log_context(run_id=ctx.run_id)
        logger.info(
            "Starting restore run",
            extra={"metrics": {"archive_url": ctx.archive_url, "local": ctx.local}},
        )

        try:
            for phase in phases:
                set_log_context(stage=phase.name)
                started_at = time.perf_counter()
                try:
                    # Skipped phases still pass through their lifecycle state.
                    if phase.state is not None:
                        tracker.advance(phase.state)
                    if phase.skip_in_local and ctx.local:
                        logger.info(f"Skipping {phase.name} in local mode")
                        skipped.append(phase.name)
                        continue
                    result = phase.run(ctx)
                except Exception as error:  # noqa: BLE001
                    tracker.advance("FAILED")
                    code = classify_restore_error(error)
                    logger.error(
                        f"Phase {phase.name} failed [{code}]: {error}",
                        extra={"duration_ms": _elapsed_ms(started_at)},
                    )
                    return self._report(
                        ctx,
                        tracker,
                        completed,
                        skipped,
                        failed_phase=phase.name,
                        error_code=code,
                        error_message=build_error_details(error),
                    )

                if result is not None:
                    ctx.results[phase.name] = result
                completed.append(phase.name)
                logger.info(
                    f"Phase {phase.name} completed",
                    extra={"duration_ms": _elapsed_ms(started_at)},
                )

            tracker.advance("DONE")
            logger.info("Restore run completed")
            return self._report(ctx, tracker, completed, skipped)
        finally:
            clear_log_context(["stage"])

    def _fetch_archive(self, ctx: RunContext) -> dict[str, str]:
        ctx.locator = parse_archive_url(ctx.archive_url, bucket_pattern=self.bucket_pattern)
        ctx.archive_file = download_archive(
            object_store=self.object_store,
            locator=ctx.locator,
            dest_dir=ctx.work_dir,
        )
        ctx.extract_dir = extract_archive(ctx.archive_file, ctx.work_dir / "extracted")
        dumps = list_dump_files(ctx.extract_dir)
        if not dumps:
            raise PreconditionError(f"Archive {ctx.locator.url} contains no dump files")
        return {"archive_file": str(ctx.archive_file), "dumps": [d.collection for d in dumps]}

    def _capture_identity(self, ctx: RunContext) -> dict[str, str]:
        if not ctx.bucket:
            raise PreconditionError("Target bucket is not configured")
        with self.document_store.session() as session:
            org = identity.load_organization(session, self.policy.organizations_collection)
        ctx.pre_restore_org = org
        ctx.tenant_id = str(org["_id"])
        return {"tenant_id": ctx.tenant_id}

    def _stop_services(self, ctx: RunContext) -> None:
        lifecycle.stop_services(self.process_controller)

    def _rotate(self, ctx: RunContext) -> list[str]:
        with self.document_store.session() as session:
            excluded = self.policy.rotation_exclude_set
            rotation.drop_stale_rotations(session, excluded)
            return rotation.rotate(session, excluded)

    def _restore(self, ctx: RunContext) -> list[str]:
        dumps = list_dump_files(_require(ctx.extract_dir, "extract_dir"))
        with self.document_store.session() as session:
            return sorted(restore.restore(session, dumps))

    def _merge_identity(self, ctx: RunContext) -> dict[str, int]:
        with self.document_store.session() as session:
            return identity.merge_identity(
                session,
                _require(ctx.pre_restore_org, "pre_restore_org"),
                self.policy.identity_fields,
                organizations_collection=self.policy.organizations_collection,
            )

    def _reassign_organization(self, ctx: RunContext) -> dict[str, int]:
        with self.document_store.session() as session:
            return identity.reassign_organization(
                session,
                _require(ctx.pre_restore_org, "pre_restore_org"),
                self.policy.organization_references,
                organizations_collection=self.policy.organizations_collection,
            )

    def _relocate_assets(self, ctx: RunContext) -> assets.RelocationResult:
        with self.document_store.session() as session:
            return assets.relocate(
                session,
                self.object_store,
                archive_root=_require(ctx.extract_dir, "extract_dir"),
                tenant_id=_require(ctx.tenant_id, "tenant_id"),
                bucket=ctx.bucket,
                collection=self.policy.files_collection,
            )

    def _sanitize_settings(self, ctx: RunContext) -> settings_sanitizer.SanitizeResult:
        with self.document_store.session() as session:
            return settings_sanitizer.sanitize(session, self.policy)

    def _migrate_schema(self, ctx: RunContext) -> None:
        lifecycle.migrate_schema(self.migration_runner)

    def _start_services(self, ctx: RunContext) -> None:
        lifecycle.start_services(self.process_controller)

    def _bootstrap(self, ctx: RunContext) -> dict[str, int]:
        outcome = lifecycle.bootstrap(
            self.bootstrap_client,
            max_attempts=self.bootstrap_max_attempts,
            delay_seconds=self.bootstrap_delay_seconds,
            sleep_fn=self.sleep_fn,
        )
        return {"attempts": outcome.attempts}

    def _finalize(self, ctx: RunContext) -> list[str]:
        with self.document_store.session() as session:
            return finalizer.finalize(
                session,
                archive_file=ctx.archive_file,
                work_dir=ctx.extract_dir,
            )

    def _report(
        self,
        ctx: RunContext,
        tracker: LifecycleTracker,
        completed: list[str],
        skipped: list[str],
        *,
        failed_phase: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> RunReport:
        return RunReport(
            run_id=ctx.run_id,
            status="failed" if failed_phase else "completed",
            state=tracker.state,
            completed_phases=list(completed),
            skipped_phases=list(skipped),
            failed_phase=failed_phase,
            error_code=error_code,
            error_message=error_message,
            results=dict(ctx.results),
        )


def _require(value: Any, name: str) -> Any:
    if value is None:
        raise PreconditionError(f"Run context is missing {name}")
    return value


def _elapsed_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000, 3)
