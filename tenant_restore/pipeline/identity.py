from __future__ import annotations

from collections import defaultdict
from typing import Any, Sequence

from tenant_restore.config.policy import IdentityField, OrganizationReference
from tenant_restore.logging import get_logger
from tenant_restore.storage.documents import Document, DocumentSession
from tenant_restore.utils.error_taxonomy import MutationError, OrganizationRecordError

logger = get_logger("identity")


def load_organization(
    session: DocumentSession, collection: str = "organizations"
) -> Document:
    """Return the single organization record; zero or several is fatal."""
    records = session.find(collection, {})
    if not records:
        raise OrganizationRecordError(f"Organization not found in {collection}")
    if len(records) > 1:
        raise OrganizationRecordError(
            f"Expected one organization in {collection}, found {len(records)}"
        )
    return records[0]


def merge_identity(
    session: DocumentSession,
    pre_restore_org: Document,
    identity_fields: Sequence[IdentityField],
    *,
    organizations_collection: str = "organizations",
) -> dict[str, int]:
    """Write the captured identity values back over the restored records.

    A field missing from ``pre_restore_org`` is unset so that the live record
    matches the pre-restore one exactly.
    """
    load_organization(session, organizations_collection)

    modified: dict[str, int] = defaultdict(int)
    for item in identity_fields:
        update: dict[str, Any]
        if item.field in pre_restore_org:
            update = {"$set": {item.field: pre_restore_org[item.field]}}
        else:
            update = {"$unset": {item.field: ""}}
        try:
            modified[item.collection] += session.update_many(item.collection, {}, update)
        except Exception as error:
            raise MutationError(
                f"Failed to merge {item.collection}.{item.field}: {error}"
            ) from error

    logger.info(
        "Merged identity fields",
        extra={"metrics": {"modified": dict(modified)}},
    )
    return dict(modified)


def reassign_organization(
    session: DocumentSession,
    pre_restore_org: Document,
    references: Sequence[OrganizationReference],
    *,
    organizations_collection: str = "organizations",
) -> dict[str, int]:
    """Move the restored organization and its references to the deployment's ``_id``.

    ``_id`` is immutable, so a restored record carrying a different id is
    inserted again under ``pre_restore_org["_id"]`` and the old copy deleted.
    Reference fields that are empty or missing are left alone.
    """
    org_id = pre_restore_org["_id"]
    restored = load_organization(session, organizations_collection)

    modified: dict[str, int] = defaultdict(int)
    try:
        if restored["_id"] != org_id:
            session.insert_many(organizations_collection, [{**restored, "_id": org_id}])
            session.delete_many(organizations_collection, {"_id": restored["_id"]})
            modified[organizations_collection] += 1
        for item in references:
            modified[item.collection] += session.update_many(
                item.collection,
                {item.field: {"$nin": [None, ""]}},
                {"$set": {item.field: org_id}},
            )
    except Exception as error:
        raise MutationError(f"Failed to reassign organization {org_id}: {error}") from error

    logger.info(
        "Reassigned organization references",
        extra={"metrics": {"organization_id": str(org_id), "modified": dict(modified)}},
    )
    return dict(modified)
