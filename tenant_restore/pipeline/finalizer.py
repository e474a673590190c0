from __future__ import annotations

import shutil
from pathlib import Path

from tenant_restore.logging import get_logger
from tenant_restore.pipeline.rotation import drop_rotated
from tenant_restore.storage.documents import DocumentSession

logger = get_logger("finalizer")


def remove_artifacts(archive_file: Path | None, work_dir: Path | None) -> None:
    if archive_file is not None:
        archive_file.unlink(missing_ok=True)
    if work_dir is not None and work_dir.exists():
        shutil.rmtree(work_dir)


def finalize(
    session: DocumentSession,
    *,
    archive_file: Path | None,
    work_dir: Path | None,
) -> list[str]:
    """Delete temporary archive files, then drop every rotated collection.

    This removes the only rollback copy of the pre-restore data.
    """
    remove_artifacts(archive_file, work_dir)
    dropped = drop_rotated(session)
    logger.info(
        f"Dropped {len(dropped)} rotated collections",
        extra={"metrics": {"dropped": dropped}},
    )
    return dropped
