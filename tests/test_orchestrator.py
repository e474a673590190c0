from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

import tenant_restore.pipeline.orchestrator as orchestrator_module
from tenant_restore.config.policy import IdentityField, OrganizationReference, RestorePolicy
from tenant_restore.pipeline.orchestrator import RestoreOrchestrator
from tests.fakes import (
    FakeBootstrapClient,
    FakeDocumentStore,
    FakeMigrationRunner,
    FakeObjectStore,
    FakeProcessController,
    build_archive,
)

ARCHIVE_URL = "s3://acme-backups/2026/10/tenant.tar.gz"
BUCKET = "acme-assets"
TENANT = "org-live"

POLICY = RestorePolicy(
    identity_fields=[
        IdentityField(collection="organizations", field="orgCoreToken"),
        IdentityField(collection="organizations", field="apiKey"),
    ],
    organization_references=[
        OrganizationReference(collection="users", field="organization"),
        OrganizationReference(collection="organizationaffiliations", field="organization"),
    ],
    rotation_exclude=["agendaJobs"],
    settings_carry_forward=["templatesUrl"],
    settings_delete=["sslDomain"],
)


def _live_collections() -> dict[str, list[dict[str, Any]]]:
    return {
        "organizations": [
            {"_id": TENANT, "name": "Live Org", "orgCoreToken": "T1", "apiKey": "live-key"}
        ],
        "settings": [
            {"_id": "s-1", "settingKey": "templatesUrl", "value": "https://live/templates"},
            {"_id": "s-2", "settingKey": "sslDomain", "value": "live.example"},
        ],
        "files": [{"_id": "f-live", "name": "Old", "key": f"{TENANT}/old.pdf", "bucket": BUCKET}],
        "connections": [{"_id": "c-1", "provider": "google", "isValid": True}],
        "agendaJobs": [{"_id": "j-1", "name": "nightly"}],
    }


def _dump_collections() -> dict[str, list[dict[str, Any]]]:
    return {
        "organizations": [
            {
                "_id": "org-dump",
                "name": "Dump Org",
                "plan": "enterprise",
                "orgCoreToken": "T-dump",
                "apiKey": "dump-key",
            }
        ],
        "settings": [
            {"_id": "d-1", "settingKey": "templatesUrl", "value": "https://dump/templates"},
            {"_id": "d-2", "settingKey": "sslDomain", "value": "dump.example"},
            {"_id": "d-3", "settingKey": "theme", "value": "dark"},
        ],
        "files": [
            {"_id": "f-1", "name": "Policy", "key": "org-dump/policy.pdf", "bucket": "dump-assets"},
            {"_id": "f-2", "name": "Terms", "key": "org-dump/terms.pdf", "bucket": "dump-assets"},
        ],
        "connections": [{"_id": "c-9", "provider": "slack", "isValid": True}],
        "users": [
            {"_id": "u-1", "email": "owner@example.com", "organization": "org-dump"},
            {"_id": "u-2", "email": "support@example.com", "organization": None},
        ],
        "organizationaffiliations": [{"_id": "a-1", "user": "u-1", "organization": "org-dump"}],
    }


class Harness:
    def __init__(self, tmp_path: Path, *, bootstrap_failures: int = 0) -> None:
        archive = build_archive(
            tmp_path,
            dumps=_dump_collections(),
            assets={"policy.pdf": b"%PDF-policy", "terms.pdf": b"%PDF-terms"},
        )
        self.work_dir = tmp_path / "work"
        self.documents = FakeDocumentStore(_live_collections())
        self.objects = FakeObjectStore({("acme-backups", "2026/10/tenant.tar.gz"): archive})
        self.processes = FakeProcessController(journal=self.documents.calls)
        self.migrations = FakeMigrationRunner()
        self.bootstrap = FakeBootstrapClient(failures=bootstrap_failures)
        self.sleeps: list[float] = []
        self.orchestrator = RestoreOrchestrator(
            document_store=self.documents,
            object_store=self.objects,
            process_controller=self.processes,
            migration_runner=self.migrations,
            bootstrap_client=self.bootstrap,
            policy=POLICY,
            bucket_pattern=r"[a-z0-9][a-z0-9.-]*-backups",
            bootstrap_max_attempts=3,
            bootstrap_delay_seconds=5.0,
            sleep_fn=self.sleeps.append,
        )

    def run(self, *, local: bool = False):
        return self.orchestrator.run(
            archive_url=ARCHIVE_URL,
            bucket=BUCKET,
            work_dir=self.work_dir,
            local=local,
            run_id="test-run",
        )


def test_full_run_restores_tenant_and_finalizes(tmp_path: Path) -> None:
    harness = Harness(tmp_path)

    report = harness.run()

    assert report.status == "completed"
    assert report.state == "DONE"
    assert report.failed_phase is None
    assert report.completed_phases == [phase.name for phase in harness.orchestrator.phases()]

    collections = harness.documents.collections
    assert len(collections["organizations"]) == 1
    org = collections["organizations"][0]
    assert org["_id"] == TENANT
    assert org["orgCoreToken"] == "T1"
    assert org["apiKey"] == "live-key"
    assert org["name"] == "Dump Org"
    assert org["plan"] == "enterprise"

    assert [user["organization"] for user in collections["users"]] == [TENANT, None]
    assert [a["organization"] for a in collections["organizationaffiliations"]] == [TENANT]

    for reference in collections["files"]:
        assert reference["bucket"] == BUCKET
        assert reference["key"].startswith(f"{TENANT}/")
    assert sorted(key for _, key in harness.objects.uploads) == [
        f"{TENANT}/policy.pdf",
        f"{TENANT}/terms.pdf",
    ]

    templates = [doc for doc in collections["settings"] if doc["settingKey"] == "templatesUrl"]
    assert [doc["value"] for doc in templates] == ["https://live/templates"]
    assert not [doc for doc in collections["settings"] if doc["settingKey"] == "sslDomain"]
    assert all(doc["isValid"] is False for doc in collections["connections"])

    assert collections["agendaJobs"] == [{"_id": "j-1", "name": "nightly"}]
    assert not [name for name in collections if name.startswith("back_")]
    assert not harness.work_dir.joinpath("tenant.tar.gz").exists()
    assert not harness.work_dir.joinpath("extracted").exists()

    assert harness.processes.calls == ["stop", "start", "status"]
    first_rename = next(i for i, call in enumerate(harness.documents.calls) if call[0] == "rename")
    assert harness.documents.calls.index(("process", "stop")) < first_rename
    assert harness.migrations.calls == 1
    assert harness.bootstrap.attempts == 1
    assert report.results["bootstrap"] == {"attempts": 1}


def test_every_phase_session_is_released(tmp_path: Path) -> None:
    harness = Harness(tmp_path)

    harness.run()

    assert harness.documents.sessions_opened > 0
    assert harness.documents.sessions_opened == harness.documents.sessions_closed


def test_local_mode_skips_service_lifecycle(tmp_path: Path) -> None:
    harness = Harness(tmp_path)

    report = harness.run(local=True)

    assert report.status == "completed"
    assert report.skipped_phases == ["stop_services", "migrate_schema", "start_services"]
    assert harness.processes.calls == []
    assert harness.migrations.calls == 0
    assert harness.bootstrap.attempts == 1


_PHASES_BEFORE_FINALIZE = [
    "fetch_archive",
    "capture_identity",
    "stop_services",
    "rotate",
    "restore",
    "merge_identity",
    "reassign_organization",
    "relocate_assets",
    "sanitize_settings",
    "migrate_schema",
    "start_services",
    "bootstrap",
]


@pytest.mark.parametrize("failing_phase", _PHASES_BEFORE_FINALIZE)
def test_finalize_never_runs_after_a_failed_phase(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, failing_phase: str
) -> None:
    harness = Harness(tmp_path)
    finalize_calls: list[Any] = []
    monkeypatch.setattr(
        orchestrator_module.finalizer,
        "finalize",
        lambda *args, **kwargs: finalize_calls.append((args, kwargs)),
    )

    def _boom(ctx):
        raise RuntimeError(f"{failing_phase} exploded")

    monkeypatch.setattr(harness.orchestrator, f"_{failing_phase}", _boom)

    report = harness.run()

    assert report.status == "failed"
    assert report.failed_phase == failing_phase
    assert report.state == "FAILED"
    assert report.error_code == "UNKNOWN_ERROR"
    assert "finalize" not in report.completed_phases
    assert finalize_calls == []
    assert harness.documents.sessions_opened == harness.documents.sessions_closed


def test_missing_organization_aborts_before_mutation(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    harness.documents.collections["organizations"] = []

    report = harness.run()

    assert report.failed_phase == "capture_identity"
    assert report.error_code == "RESTORE_ORGANIZATION_INVALID"
    assert harness.processes.calls == []
    assert not [call for call in harness.documents.calls if call[0] == "rename"]


def test_restore_failure_keeps_backups_for_manual_recovery(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    harness.documents.fail_inserts.add("settings")

    report = harness.run()

    assert report.failed_phase == "restore"
    assert report.error_code == "RESTORE_MUTATION_FAILED"
    assert "back_organizations" in harness.documents.collections
    assert "back_settings" in harness.documents.collections
    assert harness.work_dir.joinpath("tenant.tar.gz").exists()


def test_bootstrap_retries_then_finalizes(tmp_path: Path) -> None:
    harness = Harness(tmp_path, bootstrap_failures=2)

    report = harness.run()

    assert report.status == "completed"
    assert harness.bootstrap.attempts == 3
    assert harness.sleeps == [5.0, 5.0, 5.0]


def test_bootstrap_exhaustion_keeps_restored_data(tmp_path: Path) -> None:
    harness = Harness(tmp_path, bootstrap_failures=10)

    report = harness.run()

    assert report.failed_phase == "bootstrap"
    assert report.error_code == "RESTORE_BOOTSTRAP_FAILED"
    assert harness.bootstrap.attempts == 3
    assert harness.documents.collections["organizations"][0]["orgCoreToken"] == "T1"
    assert "back_organizations" in harness.documents.collections


def test_malformed_archive_url_fails_first_phase(tmp_path: Path) -> None:
    harness = Harness(tmp_path)

    report = harness.orchestrator.run(
        archive_url="s3://acme-assets/tenant.tar.gz",
        bucket=BUCKET,
        work_dir=harness.work_dir,
    )

    assert report.failed_phase == "fetch_archive"
    assert report.error_code == "RESTORE_PRECONDITION"
    assert report.completed_phases == []
    assert harness.objects.downloads == []
