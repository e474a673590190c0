from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import bson
from bson.errors import InvalidBSON

from tenant_restore.logging import get_logger
from tenant_restore.pipeline.rotation import drop_collection_if_exists
from tenant_restore.storage.archive import DumpFile
from tenant_restore.storage.documents import DocumentSession
from tenant_restore.utils.error_taxonomy import ArchiveLayoutError, MutationError

logger = get_logger("restore")


def read_dump_documents(path: Path) -> list[dict[str, Any]]:
    try:
        with path.open("rb") as handle:
            return list(bson.decode_file_iter(handle))
    except InvalidBSON as error:
        raise ArchiveLayoutError(f"Dump file {path.name} is not valid BSON: {error}") from error


def restore(session: DocumentSession, dump_files: Sequence[DumpFile]) -> set[str]:
    """Replace each live collection with the documents of its dump file."""
    restored: set[str] = set()
    for dump in dump_files:
        documents = read_dump_documents(dump.path)
        try:
            drop_collection_if_exists(session, dump.collection)
            inserted = session.insert_many(dump.collection, documents)
        except Exception as error:
            raise MutationError(
                f"Failed to restore collection {dump.collection}: {error}"
            ) from error

        restored.add(dump.collection)
        logger.info(
            f"Restored collection {dump.collection}",
            extra={"metrics": {"documents": inserted}},
        )
    return restored
