"""Blob storage for consultation audio (local disk or MinIO/S3)."""

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Iterator

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vetscribe.config import get_settings
from vetscribe.services.errors import StorageWriteError

settings = get_settings()
logger = logging.getLogger(__name__)


CONTENT_TYPE_EXTENSIONS = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/m4a": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/mp4": ".mp4",
    "audio/webm": ".webm",
    "video/webm": ".webm",
}

EXTENSION_CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".m4a": "audio/m4a",
    ".mp4": "audio/mp4",
    ".webm": "audio/webm",
}


def extension_for(content_type: str | None, original_filename: str | None = None) -> str:
    """
    Pick a file extension for an upload.

    The encoding hint wins ("audio/webm;codecs=opus" -> ".webm"); the original
    file name is consulted next; ".webm" is what browsers record by default.
    """
    if content_type:
        base_type = content_type.split(";", 1)[0].strip().lower()
        if base_type in CONTENT_TYPE_EXTENSIONS:
            return CONTENT_TYPE_EXTENSIONS[base_type]

    if original_filename:
        ext = Path(original_filename).suffix.lower()
        if ext in EXTENSION_CONTENT_TYPES:
            return ext

    return ".webm"


class BlobStorage(ABC):
    """Write-once storage for uploaded audio."""

    @abstractmethod
    def write_file(self, content: bytes, key: str, content_type: str | None = None) -> str:
        """Persist bytes under `key` and return the storage reference."""

    @abstractmethod
    def open_file(self, ref: str) -> BinaryIO:
        """Open a stored file for reading."""

    @abstractmethod
    def delete_file(self, ref: str) -> None:
        """Delete a stored file. Missing files are ignored."""

    @abstractmethod
    @contextmanager
    def local_copy(self, ref: str) -> Iterator[Path]:
        """Yield a filesystem path holding the file's content."""

    @abstractmethod
    def health_check(self) -> bool:
        """Check if storage is accessible."""


class LocalBlobStorage(BlobStorage):
    """Files on the local disk under a base directory."""

    def __init__(self, base_dir: Path | None = None):
        self._base = Path(base_dir or settings.upload_dir)

    @property
    def base_dir(self) -> Path:
        return self._base

    def write_file(self, content: bytes, key: str, content_type: str | None = None) -> str:
        dest = self._base / key
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(content)
        except OSError as e:
            raise StorageWriteError(f"Failed to write {dest}: {e}") from e
        return str(dest)

    def open_file(self, ref: str) -> BinaryIO:
        return open(ref, "rb")

    def delete_file(self, ref: str) -> None:
        try:
            os.unlink(ref)
        except FileNotFoundError:
            pass

    @contextmanager
    def local_copy(self, ref: str) -> Iterator[Path]:
        # Already on disk; the original must never be removed here.
        yield Path(ref)

    def health_check(self) -> bool:
        try:
            self._base.mkdir(parents=True, exist_ok=True)
            return os.access(self._base, os.W_OK)
        except OSError:
            return False


class S3BlobStorage(BlobStorage):
    """Objects in a MinIO/S3 bucket."""

    def __init__(self):
        self._client = None
        self._bucket = settings.minio_bucket

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            endpoint_url = f"{'https' if settings.minio_use_ssl else 'http'}://{settings.minio_endpoint}"
            self._client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.minio_access_key,
                aws_secret_access_key=settings.minio_secret_key,
                config=Config(signature_version="s3v4"),
            )
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError:
            self._client.create_bucket(Bucket=self._bucket)

    def write_file(self, content: bytes, key: str, content_type: str | None = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.upload_fileobj(BytesIO(content), self._bucket, key, ExtraArgs=extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageWriteError(f"Failed to upload {key}: {e}") from e
        return key

    def open_file(self, ref: str) -> BinaryIO:
        response = self.client.get_object(Bucket=self._bucket, Key=ref)
        return response["Body"]

    def delete_file(self, ref: str) -> None:
        self.client.delete_object(Bucket=self._bucket, Key=ref)

    @contextmanager
    def local_copy(self, ref: str) -> Iterator[Path]:
        settings.conversion_dir.mkdir(parents=True, exist_ok=True)
        tmp_dir = Path(tempfile.mkdtemp(dir=settings.conversion_dir))
        path = tmp_dir / Path(ref).name
        try:
            self.client.download_file(self._bucket, ref, str(path))
            yield path
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    def health_check(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self._bucket)
            return True
        except Exception:
            return False


def get_blob_storage() -> BlobStorage:
    """Build the storage backend selected in settings."""
    if settings.storage_backend == "s3":
        return S3BlobStorage()
    return LocalBlobStorage()


# Singleton instance
blob_storage = get_blob_storage()
