from __future__ import annotations

from typing import AbstractSet

from tenant_restore.logging import get_logger
from tenant_restore.storage.documents import DocumentSession
from tenant_restore.utils.error_taxonomy import MutationError, NamespaceNotFoundError
from tenant_restore.utils.predicates import (
    is_rotated_name,
    live_name,
    rotated_name,
)

logger = get_logger("rotation")


def drop_collection_if_exists(session: DocumentSession, name: str) -> bool:
    """Drop ``name``; a missing namespace counts as success. Returns True if dropped."""
    try:
        session.drop_collection(name)
    except NamespaceNotFoundError:
        logger.info(f"Collection {name} not found, nothing to drop")
        return False
    return True


def drop_stale_rotations(
    session: DocumentSession, exclude_names: AbstractSet[str] = frozenset()
) -> list[str]:
    """Drop ``back_<name>`` collections that the next rotation would replace.

    A rotated collection is kept when it has no live counterpart, or when the
    counterpart is in ``exclude_names`` and so will not be rotated onto it:
    either way it may be the only remaining copy left by an earlier failed run.
    """
    names = set(session.list_collection_names())
    dropped: list[str] = []
    for name in sorted(names):
        if not is_rotated_name(name):
            continue
        source = live_name(name)
        if source not in names or source in exclude_names:
            continue
        if drop_collection_if_exists(session, name):
            dropped.append(name)
    if dropped:
        logger.info(
            "Dropped stale rotated collections",
            extra={"metrics": {"dropped": dropped}},
        )
    return dropped


def rotate(session: DocumentSession, exclude_names: AbstractSet[str]) -> list[str]:
    rotated: list[str] = []
    for name in session.list_collection_names():
        if is_rotated_name(name) or name in exclude_names:
            continue
        target = rotated_name(name)
        try:
            session.rename_collection(name, target)
        except Exception as error:
            raise MutationError(
                f"Failed to rotate collection {name} to {target}: {error}"
            ) from error
        rotated.append(name)

    logger.info(
        f"Rotated {len(rotated)} collections",
        extra={"metrics": {"rotated": rotated, "excluded": sorted(exclude_names)}},
    )
    return rotated


def drop_rotated(session: DocumentSession) -> list[str]:
    dropped: list[str] = []
    for name in session.list_collection_names():
        if not is_rotated_name(name):
            continue
        try:
            if drop_collection_if_exists(session, name):
                dropped.append(name)
        except Exception as error:
            raise MutationError(f"Failed to drop rotated collection {name}: {error}") from error
    return dropped
