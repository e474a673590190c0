from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Restore settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TENANT_RESTORE_",
        extra="ignore",
    )

    environment: str = "local"
    work_dir: Path = Path("data/restore")
    policy_path: Path = Path("tenant_restore/config/restore_policy.yaml")

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        validation_alias=AliasChoices("TENANT_RESTORE_MONGODB_URI", "MONGODB_URI"),
    )
    mongodb_database: str = Field(
        default="dash-rest",
        validation_alias=AliasChoices(
            "TENANT_RESTORE_MONGODB_DATABASE",
            "MONGODB_DATABASE",
        ),
    )

    aws_s3_bucket: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TENANT_RESTORE_AWS_S3_BUCKET", "AWS_S3_BUCKET"),
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("TENANT_RESTORE_AWS_REGION", "AWS_REGION"),
    )
    s3_endpoint_url: str | None = None
    s3_upload_timeout_seconds: float = Field(default=6000.0, gt=0)
    backup_bucket_pattern: str = r"[a-z0-9][a-z0-9.-]*-backups"

    process_stop_command: str = "pm2 stop all"
    process_start_command: str = "pm2 start all"
    process_status_command: str = "pm2 status"
    schema_migration_command: str = "npm run migrate"
    command_cwd: Path | None = None

    support_account_url: str = "http://127.0.0.1:3000/api/v1/organizations/support-account"
    bootstrap_max_attempts: int = Field(default=10, ge=1)
    bootstrap_delay_seconds: float = Field(default=5.0, ge=0)
    bootstrap_timeout_seconds: float = Field(default=30.0, gt=0)

    log_level: str = "INFO"
    log_file: Path | None = None

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_work_dir(self) -> Path:
        return self._resolve_path(self.work_dir)

    @property
    def resolved_policy_path(self) -> Path:
        return self._resolve_path(self.policy_path)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def policy_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_policy_path)

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
