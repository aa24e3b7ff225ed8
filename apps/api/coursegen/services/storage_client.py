# apps/api/coursegen/services/storage_client.py
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import TransientIOError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _s3_client(endpoint: str, access_key: str, secret_key: str, region: str):
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        region_name=region,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class StorageClient:
    """S3-compatible object storage (MinIO in dev)."""

    def __init__(self, client=None, *, cfg: Settings = default_settings):
        self.cfg = cfg
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _s3_client(
                self.cfg.storage_endpoint,
                self.cfg.storage_access_key,
                self.cfg.storage_secret_key,
                self.cfg.storage_region,
            )
        return self._client

    def is_public(self, bucket: str) -> bool:
        return bucket in self.cfg.public_buckets

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.cfg.storage_public_endpoint.rstrip('/')}/{bucket}/{key}"

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> str:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise TransientIOError(f"upload s3://{bucket}/{key} failed: {e}") from e
        logger.info("uploaded s3://%s/%s (%d bytes)", bucket, key, len(body))
        return self.resolve_url(bucket, key)

    def put_file(self, bucket: str, key: str, path: Path, content_type: str) -> str:
        return self.put(bucket, key, path.read_bytes(), content_type)

    def presign_get(self, bucket: str, key: str, ttl: Optional[int] = None) -> str:
        return self._presign("get_object", bucket, key, ttl)

    def presign_put(self, bucket: str, key: str, ttl: Optional[int] = None) -> str:
        return self._presign("put_object", bucket, key, ttl)

    def _presign(self, op: str, bucket: str, key: str, ttl: Optional[int]) -> str:
        try:
            return self.client.generate_presigned_url(
                op,
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl or self.cfg.presign_ttl_sec),
            )
        except (BotoCoreError, ClientError) as e:
            raise TransientIOError(f"presign {op} s3://{bucket}/{key} failed: {e}") from e

    def resolve_url(self, bucket: str, key: str) -> str:
        """Public URL for public buckets, presigned GET otherwise."""
        if self.is_public(bucket):
            return self.public_url(bucket, key)
        return self.presign_get(bucket, key)
