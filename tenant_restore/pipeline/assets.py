from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tenant_restore.logging import get_logger
from tenant_restore.storage.archive import list_asset_files
from tenant_restore.storage.documents import DocumentSession
from tenant_restore.storage.objects import ObjectStore
from tenant_restore.utils.error_taxonomy import MutationError
from tenant_restore.utils.predicates import foreign_tenant_basename

logger = get_logger("assets")


@dataclass(frozen=True, slots=True)
class RelocationResult:
    rewritten_references: int
    uploaded_keys: list[str]
    failed_files: list[str]


def tenant_key(tenant_id: str, basename: str) -> str:
    return f"{tenant_id}/{basename}"


def rewrite_references(
    session: DocumentSession,
    *,
    tenant_id: str,
    bucket: str,
    collection: str = "files",
) -> int:
    rewritten = 0
    for reference in session.find(collection, {}):
        key = reference.get("key")
        if not isinstance(key, str):
            continue
        basename = foreign_tenant_basename(key, tenant_id)
        if basename is None:
            continue
        try:
            session.update_many(
                collection,
                {"_id": reference["_id"]},
                {"$set": {"key": tenant_key(tenant_id, basename), "bucket": bucket}},
            )
        except Exception as error:
            raise MutationError(
                f"Failed to rewrite file reference {reference.get('_id')}: {error}"
            ) from error
        rewritten += 1
    return rewritten


def upload_assets(
    object_store: ObjectStore,
    *,
    archive_root: Path,
    tenant_id: str,
    bucket: str,
) -> tuple[list[str], list[str]]:
    uploaded: list[str] = []
    failed: list[str] = []
    files = list_asset_files(archive_root)
    if not files:
        logger.info("No organization asset directory in archive, nothing to upload")
        return uploaded, failed

    for path in files:
        key = tenant_key(tenant_id, path.name)
        try:
            object_store.upload_file(path=path, bucket=bucket, key=key)
        except Exception as error:  # noqa: BLE001
            logger.warning(f"Upload of {path.name} to s3://{bucket}/{key} failed: {error}")
            failed.append(path.name)
            continue
        uploaded.append(key)
        logger.info(f"Asset {path.name} uploaded to s3://{bucket}/{key}")

    logger.info(
        "Asset upload finished",
        extra={"metrics": {"uploaded": len(uploaded), "failed": len(failed)}},
    )
    return uploaded, failed


def relocate(
    session: DocumentSession,
    object_store: ObjectStore,
    *,
    archive_root: Path,
    tenant_id: str,
    bucket: str,
    collection: str = "files",
) -> RelocationResult:
    rewritten = rewrite_references(
        session, tenant_id=tenant_id, bucket=bucket, collection=collection
    )
    logger.info(f"Rewrote {rewritten} file references to tenant {tenant_id}")
    uploaded, failed = upload_assets(
        object_store, archive_root=archive_root, tenant_id=tenant_id, bucket=bucket
    )
    return RelocationResult(
        rewritten_references=rewritten,
        uploaded_keys=uploaded,
        failed_files=failed,
    )
