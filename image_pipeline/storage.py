"""S3-compatible blob storage for original, clean and thumbnail images."""

import asyncio

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from image_pipeline.errors import ErrorKind, ErrorSource, PipelineError

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


def output_keys(user_id: str, item_id: str) -> tuple:
    """Deterministic (clean_key, thumb_key) for an item; re-runs overwrite the same objects."""
    prefix = f"user/{user_id}/items/{item_id}"
    return f"{prefix}/clean.jpg", f"{prefix}/thumb.jpg"


def get_s3_client(config):
    """SDK client for server-side upload/download."""
    session = boto3.session.Session(
        aws_access_key_id=config.s3_access_key,
        aws_secret_access_key=config.s3_secret_key,
        region_name=config.s3_region,
    )
    return session.client(
        "s3",
        endpoint_url=config.s3_endpoint_url,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            retries={"max_attempts": 2, "mode": "standard"},
        ),
    )


def _storage_error(action: str, key: str, error: Exception) -> PipelineError:
    """Translate a botocore failure into a tagged pipeline error."""
    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _NOT_FOUND_CODES:
            return PipelineError(f"Image not found: {key}", ErrorKind.NOT_FOUND, ErrorSource.STORAGE, 404, error)
        if status:
            return PipelineError(
                f"Storage {action} failed with status {status}",
                ErrorKind.HTTP_STATUS,
                ErrorSource.STORAGE,
                status,
                error,
            )
        return PipelineError(f"Storage {action} failed: {code}", ErrorKind.UNKNOWN, ErrorSource.STORAGE, cause=error)
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
        return PipelineError(f"Storage {action} timed out", ErrorKind.TIMEOUT, ErrorSource.STORAGE, cause=error)
    if isinstance(error, BotoConnectionError):
        return PipelineError(f"Storage {action} connection failed", ErrorKind.NETWORK, ErrorSource.STORAGE, cause=error)
    return PipelineError(f"Storage {action} failed", ErrorKind.UNKNOWN, ErrorSource.STORAGE, cause=error)


class BlobStore:
    """Bucket-scoped download/upload with overwrite semantics."""

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, config) -> "BlobStore":
        return cls(get_s3_client(config), config.s3_bucket)

    def _download(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            data = response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("download", key, e) from e
        if not data:
            raise PipelineError("Downloaded image data is empty", ErrorKind.NOT_FOUND, ErrorSource.STORAGE)
        return data

    def _upload(self, key: str, data: bytes, content_type: str):
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("upload", key, e) from e

    async def download(self, key: str) -> bytes:
        logger.info("storage_download_start", storage_key=key)
        data = await asyncio.to_thread(self._download, key)
        logger.info("storage_download_complete", storage_key=key, size_bytes=len(data))
        return data

    async def upload(self, key: str, data: bytes, content_type: str = "image/jpeg"):
        """Put the object at ``key``, replacing any previous version."""
        logger.info("storage_upload_start", storage_key=key, size_bytes=len(data))
        await asyncio.to_thread(self._upload, key, data, content_type)
        logger.info("storage_upload_complete", storage_key=key)
