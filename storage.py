"""
storage.py — Blob storage layer for SendVault.

Blobs are opaque (already encrypted by clients) and addressed by a storage
key chosen here, never by the client's filename. Two backends are provided:
local disk, and MinIO / any S3-compatible endpoint through boto3.
"""

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

import config
from errors import StorageFailure
from file_service import sanitize_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobInfo:
    storage_path: str
    size_bytes: int
    checksum: str


def chunked_read(source: BinaryIO, block_size: int = None) -> Iterator[bytes]:
    """Repeatedly read BLOCK_SIZE chunks from the stream until it's empty."""
    return iter(partial(source.read, block_size or config.STREAM_CHUNK_SIZE), b"")


def new_storage_key(suggested_name: Optional[str]) -> str:
    return f"{uuid.uuid4().hex}-{sanitize_filename(suggested_name)}"


class BlobStore:

    def write(self, source: BinaryIO, size_hint: Optional[int] = None,
              suggested_name: Optional[str] = None) -> BlobInfo:
        """Stream SOURCE into a new blob and return where it landed."""
        raise NotImplementedError()

    def read(self, storage_path: str) -> BinaryIO:
        """Open a blob for reading. The caller is responsible for closing it."""
        raise NotImplementedError()

    def delete(self, storage_path: str) -> bool:
        raise NotImplementedError()


class LocalBlobStore(BlobStore):

    def __init__(self, root):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if path == self.root or not path.is_relative_to(self.root):
            raise StorageFailure(f"Invalid storage path: {storage_path!r}")
        return path

    def write(self, source, size_hint=None, suggested_name=None) -> BlobInfo:
        key = new_storage_key(suggested_name)
        target = self._resolve(key)
        partial_path = target.with_name(target.name + ".part")
        digest = hashlib.sha256()
        size = 0
        try:
            with open(partial_path, "wb") as out:
                for chunk in chunked_read(source):
                    digest.update(chunk)
                    size += len(chunk)
                    out.write(chunk)
            # completed writes become visible atomically
            os.replace(partial_path, target)
        except OSError as e:
            partial_path.unlink(missing_ok=True)
            logger.error(f"LocalDisk PUT failed for {key}: {e}")
            raise StorageFailure(f"Could not store blob: {e}") from e
        if size_hint is not None and size_hint != size:
            logger.warning(f"Blob {key}: expected {size_hint} bytes, wrote {size}")
        return BlobInfo(storage_path=key, size_bytes=size, checksum=digest.hexdigest())

    def read(self, storage_path: str) -> BinaryIO:
        path = self._resolve(storage_path)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise StorageFailure(f"Blob not found: {storage_path}") from e
        except OSError as e:
            logger.error(f"LocalDisk GET failed for {storage_path}: {e}")
            raise StorageFailure(f"Could not read blob: {e}") from e

    def delete(self, storage_path: str) -> bool:
        path = self._resolve(storage_path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"LocalDisk DELETE failed for {storage_path}: {e}")
            raise StorageFailure(f"Could not delete blob: {e}") from e


class _HashingReader:
    """Counts and hashes bytes as boto3 pulls them from the source."""

    def __init__(self, source: BinaryIO):
        self._source = source
        self.digest = hashlib.sha256()
        self.size = 0

    def read(self, size: int = -1) -> bytes:
        data = self._source.read(size)
        self.digest.update(data)
        self.size += len(data)
        return data


def _get_s3_client():
    return boto3.client(
        "s3",
        endpoint_url=config.MINIO_ENDPOINT,
        aws_access_key_id=config.MINIO_ACCESS_KEY,
        aws_secret_access_key=config.MINIO_SECRET_KEY,
        config=Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name="us-east-1",
    )


def _ensure_bucket(s3_client, bucket: str):
    try:
        s3_client.head_bucket(Bucket=bucket)
    except ClientError as e:
        if e.response["Error"]["Code"] in ("404", "NoSuchBucket"):
            s3_client.create_bucket(Bucket=bucket)
            logger.info(f"Created MinIO bucket: {bucket}")
        else:
            raise


class S3BlobStore(BlobStore):

    def __init__(self, s3_client, bucket: str):
        self._s3 = s3_client
        self.bucket = bucket

    def write(self, source, size_hint=None, suggested_name=None) -> BlobInfo:
        key = new_storage_key(suggested_name)
        reader = _HashingReader(source)
        try:
            self._s3.upload_fileobj(
                reader,
                self.bucket,
                key,
                ExtraArgs={"ContentType": "application/octet-stream"},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"MinIO PUT failed for {key}: {e}")
            raise StorageFailure(f"Could not store blob: {e}") from e
        return BlobInfo(storage_path=key, size_bytes=reader.size, checksum=reader.digest.hexdigest())

    def read(self, storage_path: str) -> BinaryIO:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=storage_path)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                raise StorageFailure(f"Blob not found: {storage_path}") from e
            logger.error(f"MinIO GET failed for {storage_path}: {e}")
            raise StorageFailure(f"Could not read blob: {e}") from e
        except BotoCoreError as e:
            logger.error(f"MinIO GET error for {storage_path}: {e}")
            raise StorageFailure(f"Could not read blob: {e}") from e
        return response["Body"]

    def delete(self, storage_path: str) -> bool:
        try:
            self._s3.head_object(Bucket=self.bucket, Key=storage_path)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return False
            raise StorageFailure(f"Could not delete blob: {e}") from e
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=storage_path)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"MinIO DELETE failed for {storage_path}: {e}")
            raise StorageFailure(f"Could not delete blob: {e}") from e
        return True


def build_storage() -> BlobStore:
    if config.STORAGE_PROVIDER == "minio":
        try:
            client = _get_s3_client()
            _ensure_bucket(client, config.MINIO_BUCKET)
            logger.info(f"MinIO connected: {config.MINIO_ENDPOINT} / bucket={config.MINIO_BUCKET}")
            return S3BlobStore(client, config.MINIO_BUCKET)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"MinIO unavailable ({e}). Falling back to local disk.")
    return LocalBlobStore(config.STORAGE_DIR)


_storage: Optional[BlobStore] = None


def get_storage() -> BlobStore:
    """Dependency - the process-wide blob store, built on first use."""
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage
