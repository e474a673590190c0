from __future__ import annotations

from pathlib import PurePosixPath

ROTATED_PREFIX = "back_"
ORG_SCOPED_DIR_MARKER = "org::"

_NAMESPACE_NOT_FOUND_CODE = 26
_NAMESPACE_NOT_FOUND_MESSAGE = "ns not found"


def is_rotated_name(name: str) -> bool:
    """True when ``name`` starts with the reserved rotation prefix."""
    return name.startswith(ROTATED_PREFIX) and len(name) > len(ROTATED_PREFIX)


def rotated_name(name: str) -> str:
    if is_rotated_name(name):
        raise ValueError(f"Collection is already rotated: {name}")
    return f"{ROTATED_PREFIX}{name}"


def live_name(name: str) -> str:
    if not is_rotated_name(name):
        raise ValueError(f"Collection is not rotated: {name}")
    return name[len(ROTATED_PREFIX) :]


def is_namespace_not_found(error: Exception) -> bool:
    """True for MongoDB's NamespaceNotFound (code 26) or its "ns not found" text."""
    code = getattr(error, "code", None)
    if code == _NAMESPACE_NOT_FOUND_CODE:
        return True
    return _NAMESPACE_NOT_FOUND_MESSAGE in str(error).lower()


def is_org_scoped_dir(name: str) -> bool:
    return ORG_SCOPED_DIR_MARKER in name


def foreign_tenant_basename(key: str, tenant_id: str) -> str | None:
    """Return the basename of a ``<tenant>/<file>`` key written under another tenant.

    Keys with any other shape, or already scoped to ``tenant_id``, yield None.
    """
    parts = PurePosixPath(key).parts
    if len(parts) != 2 or key.startswith("/"):
        return None
    segment, basename = parts
    if segment == tenant_id:
        return None
    return basename
