"""Object storage for lead documents (S3-compatible, e.g. Cloudflare R2)."""

import asyncio
import logging
from typing import Optional, Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings, settings
from app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Store bytes under ``path`` and return the public URL."""

    async def delete(self, url: str) -> None:
        """Remove the object behind a URL returned by ``upload``."""


class S3BlobStore:
    """boto3 is synchronous; calls run in a worker thread."""

    def __init__(self, config: Settings = settings, client=None):
        self.bucket = config.BLOB_BUCKET_NAME
        self.public_url = config.BLOB_PUBLIC_URL.rstrip("/")
        self._client = client or boto3.client(
            "s3",
            endpoint_url=config.BLOB_ENDPOINT_URL or None,
            aws_access_key_id=config.BLOB_ACCESS_KEY_ID or None,
            aws_secret_access_key=config.BLOB_SECRET_ACCESS_KEY or None,
            config=Config(signature_version="s3v4"),
            region_name="auto",
        )

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"[BLOB] Upload of {path} failed: {exc}")
            raise ExternalServiceError("Document storage is unavailable") from exc
        return self.url_for(path)

    async def delete(self, url: str) -> None:
        key = self.key_for(url)
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"[BLOB] Delete of {key} failed: {exc}")
            raise ExternalServiceError("Document storage is unavailable") from exc

    def url_for(self, path: str) -> str:
        return f"{self.public_url}/{path}"

    def key_for(self, url: str) -> str:
        prefix = f"{self.public_url}/"
        return url[len(prefix):] if url.startswith(prefix) else url


_blob_store: Optional[S3BlobStore] = None


def get_blob_store() -> S3BlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = S3BlobStore(settings)
    return _blob_store
