"""S3 object storage used for asset uploads and archive downloads."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config


class ObjectStore(Protocol):
    def upload_file(self, *, path: Path, bucket: str, key: str) -> str: ...

    def download_file(self, *, bucket: str, key: str, path: Path) -> Path: ...


class S3ObjectStore:
    """boto3-backed store. Reads time out after ``timeout_seconds`` (default 6000)."""

    def __init__(
        self,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        timeout_seconds: float = 6000.0,
        client: Any | None = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.timeout_seconds = timeout_seconds
        if client is None:
            extra = {} if endpoint_url is None else {"endpoint_url": endpoint_url}
            client = boto3.client(
                "s3",
                region_name=region,
                config=Config(
                    read_timeout=timeout_seconds,
                    connect_timeout=60,
                    retries={"max_attempts": 3, "mode": "standard"},
                ),
                **extra,
            )
        self._client = client

    def upload_file(self, *, path: Path, bucket: str, key: str) -> str:
        self._client.upload_file(str(path), bucket, key)
        return key

    def download_file(self, *, bucket: str, key: str, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._client.download_file(bucket, key, str(path))
        return path
