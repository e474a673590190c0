from __future__ import annotations

from dataclasses import dataclass

from tenant_restore.config.policy import RestorePolicy
from tenant_restore.logging import get_logger
from tenant_restore.storage.documents import DocumentSession
from tenant_restore.utils.error_taxonomy import MutationError
from tenant_restore.utils.predicates import rotated_name

logger = get_logger("settings")

SETTING_KEY_FIELD = "settingKey"


@dataclass(frozen=True, slots=True)
class SanitizeResult:
    carried_forward: list[str]
    deleted: dict[str, int]
    invalidated_connections: int


def carry_forward_setting(
    session: DocumentSession, *, collection: str, setting_key: str
) -> bool:
    """Copy the rotated row for ``setting_key`` into the live settings, if one exists."""
    rotated = session.find_one(rotated_name(collection), {SETTING_KEY_FIELD: setting_key})
    if rotated is None:
        logger.info(f"No rotated value for setting {setting_key}, nothing to carry forward")
        return False

    row = {k: v for k, v in rotated.items() if k != "_id"}
    session.delete_many(collection, {SETTING_KEY_FIELD: setting_key})
    session.insert_many(collection, [row])
    return True


def sanitize(session: DocumentSession, policy: RestorePolicy) -> SanitizeResult:
    collection = policy.settings_collection
    try:
        carried = [
            key
            for key in policy.settings_carry_forward
            if carry_forward_setting(session, collection=collection, setting_key=key)
        ]
        deleted = {
            key: session.delete_many(collection, {SETTING_KEY_FIELD: key})
            for key in policy.settings_delete
        }
        invalidated = session.update_many(
            policy.connections_collection,
            {},
            {"$set": {policy.connections_valid_field: False}},
        )
    except Exception as error:
        raise MutationError(f"Failed to sanitize settings: {error}") from error

    logger.info(
        "Settings sanitized",
        extra={
            "metrics": {
                "carried_forward": carried,
                "deleted": deleted,
                "invalidated_connections": invalidated,
            }
        },
    )
    return SanitizeResult(
        carried_forward=carried,
        deleted=deleted,
        invalidated_connections=invalidated,
    )
