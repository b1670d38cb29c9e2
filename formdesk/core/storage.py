"""
Where rendered submission PDFs live: an S3 bucket when FF_USE_S3 is on,
otherwise a directory under LOCAL_STORAGE_PATH.

Keys look like ``PAN001/3F9A1C2B.pdf`` in both backends.
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)


def storage_key(filename: str, folder: str = "") -> str:
    return f"{folder.strip('/')}/{filename}" if folder.strip("/") else filename


class StorageBackend(ABC):
    @abstractmethod
    async def save(self, file_bytes: bytes, filename: str, folder: str = "") -> str:
        """Store bytes and return the key to read them back with."""

    @abstractmethod
    async def read(self, key: str) -> Optional[bytes]:
        """Bytes stored under key, or None."""


class S3Storage(StorageBackend):
    def __init__(self, bucket: Optional[str] = None):
        settings = get_settings()
        self.bucket = bucket or settings.s3_bucket_name
        credentials = {}
        if settings.aws_access_key_id:
            credentials = {
                "aws_access_key_id": settings.aws_access_key_id,
                "aws_secret_access_key": settings.aws_secret_access_key,
            }
        self._s3 = boto3.client("s3", region_name=settings.aws_region, **credentials)

    async def save(self, file_bytes: bytes, filename: str, folder: str = "") -> str:
        key = storage_key(filename, folder)
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        await asyncio.to_thread(
            self._s3.put_object, Bucket=self.bucket, Key=key, Body=file_bytes, ContentType=content_type,
        )
        logger.info("Stored s3://%s/%s (%d bytes)", self.bucket, key, len(file_bytes))
        return key

    async def read(self, key: str) -> Optional[bytes]:
        def fetch() -> Optional[bytes]:
            try:
                return self._s3.get_object(Bucket=self.bucket, Key=key)["Body"].read()
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                    return None
                raise

        return await asyncio.to_thread(fetch)


class LocalStorage(StorageBackend):
    def __init__(self, base_path: Optional[str] = None):
        self.root = Path(base_path or get_settings().local_storage_path)

    def _resolve(self, key: str) -> Optional[Path]:
        path = (self.root / key).resolve()
        # Keys never escape the storage root
        return path if self.root.resolve() in path.parents else None

    async def save(self, file_bytes: bytes, filename: str, folder: str = "") -> str:
        key = storage_key(filename, folder)
        path = self._resolve(key)
        if path is None:
            raise ValueError(f"Invalid storage key: {key}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(file_bytes)
        logger.info("Stored %s (%d bytes)", path, len(file_bytes))
        return key

    async def read(self, key: str) -> Optional[bytes]:
        path = self._resolve(key)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()


def get_storage() -> StorageBackend:
    return S3Storage() if get_flags().use_s3 else LocalStorage()
