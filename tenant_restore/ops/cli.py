from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from pydantic import ValidationError

from tenant_restore.config.policy import RestorePolicy, load_policy
from tenant_restore.config.settings import Settings
from tenant_restore.logging import setup_logging
from tenant_restore.pipeline.lifecycle import (
    BootstrapClient,
    ProcessController,
    SchemaMigrationRunner,
)
from tenant_restore.pipeline.orchestrator import RestoreOrchestrator, RunReport
from tenant_restore.storage.archive import parse_archive_url
from tenant_restore.storage.documents import MongoDocumentStore
from tenant_restore.storage.objects import S3ObjectStore
from tenant_restore.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    PreconditionError,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-restore",
        description="Restore one tenant's data and assets from a backup archive.",
    )
    parser.add_argument("archive_url", help="s3://<backup bucket>/<path>.tar.gz")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Skip service stop/start and schema migration.",
    )
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path to .env file"
    )
    parser.add_argument(
        "--policy", type=Path, default=None, help="Path to restore policy YAML"
    )
    return parser


def build_orchestrator(settings: Settings, policy: RestorePolicy) -> RestoreOrchestrator:
    return RestoreOrchestrator(
        document_store=MongoDocumentStore(
            uri=settings.mongodb_uri,
            database=settings.mongodb_database,
        ),
        object_store=S3ObjectStore(
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            timeout_seconds=settings.s3_upload_timeout_seconds,
        ),
        process_controller=ProcessController(
            stop_command=settings.process_stop_command,
            start_command=settings.process_start_command,
            status_command=settings.process_status_command,
            cwd=settings.command_cwd,
        ),
        migration_runner=SchemaMigrationRunner(
            command=settings.schema_migration_command,
            cwd=settings.command_cwd,
        ),
        bootstrap_client=BootstrapClient(
            url=settings.support_account_url,
            timeout_seconds=settings.bootstrap_timeout_seconds,
        ),
        policy=policy,
        bucket_pattern=settings.backup_bucket_pattern,
        bootstrap_max_attempts=settings.bootstrap_max_attempts,
        bootstrap_delay_seconds=settings.bootstrap_delay_seconds,
    )


def report_exit_code(report: RunReport) -> int:
    if report.status == "completed" and report.finalized:
        return EXIT_OK
    return EXIT_FAILED


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    orchestrator: RestoreOrchestrator | None = None,
) -> int:
    args = build_parser().parse_args(argv)

    if os.path.exists(args.env_file):
        load_dotenv(dotenv_path=args.env_file)

    try:
        active_settings = settings or Settings()
        policy = load_policy(active_settings, args.policy)
        parse_archive_url(
            args.archive_url, bucket_pattern=active_settings.backup_bucket_pattern
        )
    except PreconditionError as e:
        print(f"Invalid archive URL:\n{e}", file=sys.stderr)
        return EXIT_USAGE
    except ValidationError as e:
        print(f"Config validation error:\n{e}", file=sys.stderr)
        return EXIT_USAGE
    except (OSError, ValueError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return EXIT_USAGE

    logger = setup_logging(
        level=getattr(logging, active_settings.log_level.upper(), logging.INFO),
        log_file=str(active_settings.log_file) if active_settings.log_file else None,
    )
    logger.info(
        "Start migration process",
        extra={
            "metrics": {
                "environment": active_settings.environment,
                "database": active_settings.mongodb_database,
                "bucket": active_settings.aws_s3_bucket,
            }
        },
    )

    runner = orchestrator or build_orchestrator(active_settings, policy)
    report = runner.run(
        archive_url=args.archive_url,
        bucket=active_settings.aws_s3_bucket or "",
        work_dir=active_settings.resolved_work_dir,
        local=args.local,
    )

    exit_code = report_exit_code(report)
    if exit_code != EXIT_OK:
        friendly = ERROR_FRIENDLY_MESSAGES.get(report.error_code, "")  # type: ignore[arg-type]
        logger.error(
            f"Restore failed in phase {report.failed_phase} [{report.error_code}]. {friendly}",
            extra={"metrics": {"details": report.error_message}},
        )
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
