from __future__ import annotations

import re
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path

from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import EndpointConnectionError, ReadTimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tenant_restore.storage.objects import ObjectStore
from tenant_restore.utils.error_taxonomy import ArchiveLayoutError, PreconditionError
from tenant_restore.utils.predicates import is_org_scoped_dir

DUMP_DIR_NAME = "dump"
ASSETS_DIR_NAME = "s3"
DUMP_SUFFIX = ".bson"

_KEY_PATTERN = r"[A-Za-z0-9][A-Za-z0-9._/-]*\.tar\.gz"


@dataclass(frozen=True, slots=True)
class ArchiveLocator:
    url: str
    bucket: str
    key: str

    @property
    def file_name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass(frozen=True, slots=True)
class DumpFile:
    collection: str
    path: Path


def parse_archive_url(url: str, *, bucket_pattern: str) -> ArchiveLocator:
    pattern = re.compile(
        rf"^s3://(?P<bucket>{bucket_pattern})/(?P<key>{_KEY_PATTERN})$"
    )
    match = pattern.match(url.strip())
    if match is None:
        raise PreconditionError(
            f"Archive URL must look like s3://<backup bucket>/<path>.tar.gz: {url}"
        )
    key = match.group("key")
    if ".." in key.split("/"):
        raise PreconditionError(f"Archive key must not contain '..': {url}")
    return ArchiveLocator(url=url.strip(), bucket=match.group("bucket"), key=key)


def download_archive(
    *,
    object_store: ObjectStore,
    locator: ArchiveLocator,
    dest_dir: Path,
    max_attempts: int = 4,
    backoff_seconds: float = 2.0,
) -> Path:
    @retry(
        wait=wait_exponential(multiplier=backoff_seconds),
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(
            (BotoConnectionError, EndpointConnectionError, ReadTimeoutError)
        ),
        reraise=True,
    )
    def _do_download() -> Path:
        return object_store.download_file(
            bucket=locator.bucket,
            key=locator.key,
            path=dest_dir / locator.file_name,
        )

    return _do_download()


def extract_archive(archive_file: Path, dest_dir: Path) -> Path:
    if not archive_file.is_file():
        raise ArchiveLayoutError(f"Archive file not found: {archive_file}")

    if dest_dir.exists():
        shutil.rmtree(dest_dir)
    dest_dir.mkdir(parents=True)

    try:
        with tarfile.open(archive_file, mode="r:gz") as tar:
            tar.extractall(dest_dir, filter="data")
    except (tarfile.TarError, EOFError) as error:
        raise ArchiveLayoutError(f"Archive is not a readable tar.gz: {error}") from error
    return dest_dir


def list_dump_files(root: Path) -> list[DumpFile]:
    """Dump files live one level below ``dump/``, in a directory named after the database."""
    dump_root = root / DUMP_DIR_NAME
    if not dump_root.is_dir():
        raise ArchiveLayoutError(f"Archive has no {DUMP_DIR_NAME}/ directory: {root}")

    database_dirs = sorted(path for path in dump_root.iterdir() if path.is_dir())
    if len(database_dirs) != 1:
        raise ArchiveLayoutError(
            f"Expected exactly one database directory in {dump_root}, "
            f"found {len(database_dirs)}"
        )

    return [
        DumpFile(collection=path.name[: -len(DUMP_SUFFIX)], path=path)
        for path in sorted(database_dirs[0].iterdir())
        if path.is_file() and path.name.endswith(DUMP_SUFFIX)
    ]


def find_asset_dir(root: Path) -> Path | None:
    assets_root = root / ASSETS_DIR_NAME
    if not assets_root.is_dir():
        return None
    for path in sorted(assets_root.iterdir()):
        if path.is_dir() and is_org_scoped_dir(path.name):
            return path
    return None


def list_asset_files(root: Path) -> list[Path]:
    asset_dir = find_asset_dir(root)
    if asset_dir is None:
        return []
    return [path for path in sorted(asset_dir.iterdir()) if path.is_file()]
