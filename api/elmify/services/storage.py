"""S3-compatible object storage (Cloudflare R2 in production, MinIO locally)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Iterator
from urllib.parse import urlsplit, urlunsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .. import settings
from ..errors import ResourceNotFoundError, StorageError

logger = logging.getLogger(__name__)

R2_HOST_SUFFIX = ".r2.cloudflarestorage.com"
AUDIO_CONTENT_TYPE = "audio/mpeg"
PRESIGNED_CACHE_CONTROL = "public, max-age=31536000"

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class StorageConfig:
    endpoint_url: str | None
    access_key: str | None
    secret_key: str | None
    bucket_name: str | None
    region: str = "auto"
    presigned_url_expiration: int = 3600

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            endpoint_url=settings.R2_ENDPOINT,
            access_key=settings.R2_ACCESS_KEY,
            secret_key=settings.R2_SECRET_KEY,
            bucket_name=settings.R2_BUCKET_NAME,
            region=settings.R2_REGION,
            presigned_url_expiration=settings.R2_PRESIGNED_URL_EXPIRATION,
        )


@dataclass
class ObjectMetadata:
    key: str
    size: int
    content_type: str | None
    last_modified: datetime | None


def to_path_style(url: str, bucket_name: str) -> str:
    """
    Rewrite a virtual-hosted R2 URL to path style.

    ``https://<bucket>.<account>.r2.cloudflarestorage.com/<key>?<query>`` becomes
    ``https://<account>.r2.cloudflarestorage.com/<bucket>/<key>?<query>``.
    Any other URL is returned unchanged.
    """
    parts = urlsplit(url)
    host = parts.hostname or ""
    prefix = f"{bucket_name}."
    if not host.endswith(R2_HOST_SUFFIX) or not host.startswith(prefix):
        return url

    netloc = parts.netloc.replace(prefix, "", 1)
    path = f"/{bucket_name}{parts.path if parts.path.startswith('/') else '/' + parts.path}"
    return urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class StorageService:
    """Thin wrapper over a boto3 S3 client bound to one bucket."""

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client if client is not None else self._create_client(config)
        logger.info(
            f"Storage service initialized with endpoint: {config.endpoint_url}, "
            f"bucket: {config.bucket_name}"
        )

    @staticmethod
    def _create_client(config: StorageConfig):
        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "standard"},
        )
        return boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            config=boto_config,
        )

    @property
    def bucket(self) -> str:
        if not self.config.bucket_name:
            raise StorageError("Object storage is not configured (R2_BUCKET_NAME is unset)")
        return self.config.bucket_name

    def generate_presigned_url(self, key: str, expires_in: int | None = None) -> str:
        """Signed GET URL for ``key`` that clients can stream from directly."""
        expires = expires_in or self.config.presigned_url_expiration
        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ResponseContentType": AUDIO_CONTENT_TYPE,
                    "ResponseCacheControl": PRESIGNED_CACHE_CONTROL,
                },
                ExpiresIn=expires,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to generate presigned URL for key {key}: {e}")
            raise StorageError(f"Failed to generate presigned URL for {key}") from e

        logger.debug(f"Generated presigned URL for key: {key} (expires in {expires}s)")
        return to_path_style(url, self.bucket)

    def presign_or_passthrough(self, path: str | None) -> str | None:
        """Presign a stored object key; absolute URLs and empty values pass through."""
        if not path:
            return None
        if path.startswith(("http://", "https://")):
            return path
        try:
            return self.generate_presigned_url(path)
        except StorageError as e:
            logger.warning(f"Could not presign image {path}: {e}")
            return None

    def object_exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if not _is_missing(e):
                logger.error(f"Error checking if object exists: {key}: {e}")
            return False

    def get_object_metadata(self, key: str) -> ObjectMetadata:
        """
        HEAD an object.

        Args:
            key: Object key in the configured bucket

        Returns:
            ObjectMetadata with size, content type and last-modified time

        Raises:
            ResourceNotFoundError: when the object does not exist
            StorageError: for any other storage failure
        """
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise ResourceNotFoundError("Audio file", key) from e
            logger.error(f"Failed to get metadata for object {key}: {e}")
            raise StorageError(f"Failed to get metadata for {key}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to get metadata for {key}") from e

        return ObjectMetadata(
            key=key,
            size=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
        )

    def list_objects(self, prefix: str = "") -> list[ObjectMetadata]:
        """Every object under ``prefix``, following continuation tokens."""
        objects: list[ObjectMetadata] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(
                        ObjectMetadata(
                            key=obj["Key"],
                            size=int(obj.get("Size", 0)),
                            content_type=None,
                            last_modified=obj.get("LastModified"),
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list objects with prefix {prefix!r}: {e}")
            raise StorageError(f"Failed to list objects under {prefix!r}") from e
        return objects

    def read_text(self, key: str, encoding: str = "utf-8") -> str:
        body = self._get_object(key)
        try:
            return body.read().decode(encoding)
        finally:
            body.close()

    def get_object_stream(self, key: str):
        """Streaming body for the whole object. Callers must close it."""
        return self._get_object(key)

    def get_object_stream_range(self, key: str, start: int, end: int | None = None):
        """Streaming body for ``bytes=start-end`` (inclusive). Callers must close it."""
        range_header = f"bytes={start}-{end}" if end is not None else f"bytes={start}-"
        return self._get_object(key, Range=range_header)

    def _get_object(self, key: str, **kwargs):
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key, **kwargs)
        except ClientError as e:
            if _is_missing(e):
                raise ResourceNotFoundError("Audio file", key) from e
            logger.error(f"Failed to get object stream for key {key}: {e}")
            raise StorageError(f"Failed to read {key}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}") from e
        return response["Body"]


def iter_body(body, chunk_size: int) -> Iterator[bytes]:
    """Yield ``body`` in ``chunk_size`` pieces and close it afterwards."""
    try:
        while True:
            chunk = body.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        body.close()


@lru_cache(maxsize=1)
def get_storage_service() -> StorageService:
    return StorageService(StorageConfig.from_settings())
