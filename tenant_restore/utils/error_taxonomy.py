from __future__ import annotations

from typing import Any, Literal

ErrorCode = Literal[
    "RESTORE_PRECONDITION",
    "RESTORE_ORGANIZATION_INVALID",
    "RESTORE_INVALID_ARCHIVE",
    "RESTORE_MUTATION_FAILED",
    "RESTORE_LIFECYCLE_FAILED",
    "RESTORE_BOOTSTRAP_FAILED",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "RESTORE_PRECONDITION": (
        "Restore preconditions are not met. Nothing was changed in the deployment."
    ),
    "RESTORE_ORGANIZATION_INVALID": (
        "Expected exactly one organization record in the deployment."
    ),
    "RESTORE_INVALID_ARCHIVE": (
        "Backup archive is malformed or has an unexpected directory layout."
    ),
    "RESTORE_MUTATION_FAILED": (
        "Writing restored data failed. Rotated back_* collections are kept "
        "for manual recovery."
    ),
    "RESTORE_LIFECYCLE_FAILED": (
        "Stopping, migrating or starting services failed. Rotated back_* "
        "collections are kept for manual recovery."
    ),
    "RESTORE_BOOTSTRAP_FAILED": (
        "Support account bootstrap did not succeed. Restored data is in place; "
        "re-run the bootstrap call once services are reachable."
    ),
    "UNKNOWN_ERROR": "Unexpected error occurred during restore run.",
}


class RestoreError(RuntimeError):
    code: ErrorCode = "UNKNOWN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PreconditionError(RestoreError):
    """Raised before any mutation when the run cannot start safely."""

    code: ErrorCode = "RESTORE_PRECONDITION"


class OrganizationRecordError(PreconditionError):
    code: ErrorCode = "RESTORE_ORGANIZATION_INVALID"


class ArchiveLayoutError(PreconditionError):
    code: ErrorCode = "RESTORE_INVALID_ARCHIVE"


class MutationError(RestoreError):
    """Raised when rotation, restore or merge writes fail. Never retried."""

    code: ErrorCode = "RESTORE_MUTATION_FAILED"


class LifecycleError(RestoreError):
    code: ErrorCode = "RESTORE_LIFECYCLE_FAILED"


class BootstrapError(RestoreError):
    code: ErrorCode = "RESTORE_BOOTSTRAP_FAILED"

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class NamespaceNotFoundError(LookupError):
    """Raised by document sessions when a collection to drop does not exist."""


def classify_restore_error(error: Exception) -> ErrorCode:
    if isinstance(error, RestoreError):
        return error.code
    return "UNKNOWN_ERROR"


def build_error_details(error: Exception) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    for field_name in ("code", "details", "attempts"):
        value: Any = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    cause = error.__cause__
    if cause is not None:
        details.append(f"caused by {cause.__class__.__name__}: {cause}")
    return "\n".join(details)
