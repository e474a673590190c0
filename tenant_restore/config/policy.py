from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenant_restore.config.settings import Settings
from tenant_restore.utils.predicates import is_rotated_name


class IdentityField(BaseModel):
    collection: str
    field: str
    model_config = ConfigDict(extra="forbid", frozen=True)


class OrganizationReference(BaseModel):
    collection: str
    field: str
    model_config = ConfigDict(extra="forbid", frozen=True)


class RestorePolicy(BaseModel):
    identity_fields: List[IdentityField] = Field(default_factory=list)
    organization_references: List[OrganizationReference] = Field(default_factory=list)
    rotation_exclude: List[str] = Field(default_factory=list)
    settings_collection: str = "settings"
    settings_carry_forward: List[str] = Field(default_factory=list)
    settings_delete: List[str] = Field(default_factory=list)
    connections_collection: str = "connections"
    connections_valid_field: str = "isValid"
    organizations_collection: str = "organizations"
    files_collection: str = "files"
    model_config = ConfigDict(extra="forbid")

    @field_validator("identity_fields", "organization_references")
    @classmethod
    def _reject_rotated_targets(cls, value: list) -> list:
        for item in value:
            if is_rotated_name(item.collection):
                raise ValueError(
                    f"Policy field targets a rotated collection: {item.collection}"
                )
        return value

    @property
    def rotation_exclude_set(self) -> frozenset[str]:
        return frozenset(self.rotation_exclude)


def load_policy(settings: Settings, path: Path | None = None) -> RestorePolicy:
    data = settings.load_yaml(path) if path is not None else settings.policy_config
    return RestorePolicy(**data)
