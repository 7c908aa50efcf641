"""Object storage access for uploaded CSV files (MinIO / S3 compatible)."""

import asyncio
from typing import IO
from urllib.parse import quote, unquote, urlparse

import boto3
import structlog
from botocore.exceptions import ClientError
from smart_open import open as smart_open

from csvimport.config import settings
from csvimport.exceptions import InvalidFileLocatorError

logger = structlog.get_logger()


def get_org_bucket_name(organization_id: str) -> str:
    return f"org-{organization_id}"


def object_key_for(job_id, file_name: str) -> str:
    """Object key an uploaded file is stored under."""
    return f"csv-imports/{job_id}/{file_name}"


def build_file_locator(organization_id: str, key: str, endpoint: str | None = None) -> str:
    """Public URL of an object: ``{endpoint}/{bucket}/{url-encoded key}``."""
    endpoint = (endpoint or settings.external_minio_endpoint).rstrip("/")
    return f"{endpoint}/{get_org_bucket_name(organization_id)}/{quote(key, safe='')}"


def resolve_file_locator(file_locator: str) -> tuple[str, str]:
    """Split a file locator into its bucket and (decoded) object key."""
    path_parts = [p for p in urlparse(file_locator).path.split("/") if p]
    if len(path_parts) < 2:
        raise InvalidFileLocatorError(file_locator)
    return path_parts[0], unquote("/".join(path_parts[1:]))


def get_s3_client():
    """
    Get configured S3 client.

    Returns:
        boto3.client: Client pointed at the MinIO endpoint
    """
    return boto3.client(
        "s3",
        endpoint_url=settings.minio_endpoint,
        aws_access_key_id=settings.minio_access_key.get_secret_value(),
        aws_secret_access_key=settings.minio_secret_key.get_secret_value(),
        region_name=settings.minio_region,
    )


class ObjectStorage:
    """Thin wrapper over the S3 client used by uploads and batch reads."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def open_text(self, bucket: str, key: str) -> IO[str]:
        """Open an object as a streaming text file (blocking)."""
        return smart_open(
            f"s3://{bucket}/{key}",
            "r",
            encoding="utf-8-sig",
            transport_params={"client": self.client},
        )

    def _ensure_bucket(self, bucket: str) -> None:
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError:
            self.client.create_bucket(Bucket=bucket)

    def _put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket(bucket)
        self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)

    async def upload(
        self,
        organization_id: str,
        key: str,
        data: bytes,
        content_type: str = "text/csv",
    ) -> str:
        """Store an upload in the organization's bucket and return its locator."""
        bucket = get_org_bucket_name(organization_id)
        await asyncio.to_thread(self._put, bucket, key, data, content_type)
        logger.info("Uploaded file to object storage", bucket=bucket, key=key, size=len(data))
        return build_file_locator(organization_id, key)
