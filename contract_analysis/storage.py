"""
Blob Storage
============

Durable binary storage for uploaded contracts.

Backends:
- local: filesystem under STORAGE_LOCAL_PATH (development, single instance)
- s3: AWS S3 bucket S3_BUCKET_NAME

Keys are tenant-namespaced with a fresh random suffix:
    contracts/<organization_id>/<uuid4>.<ext>
so two uploads of the same bytes never share a key.
"""

import hashlib
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional

import boto3
import jwt
from botocore.exceptions import BotoCoreError, ClientError

from .config import get_settings
from .errors import StorageFailure
from .ingest.sniff import extension_for

logger = logging.getLogger(__name__)

DOWNLOAD_TOKEN_TYPE = "download"
DOWNLOAD_TOKEN_ALGORITHM = "HS256"


@dataclass
class StorageMeta:
    """Result of a successful put"""
    key: str
    size_bytes: int
    sha256: str
    content_type: str


class BlobStore(ABC):
    """
    Blob store interface.

    Every backend error surfaces as StorageFailure.
    """

    @staticmethod
    def generate_key(tenant_id: str, mime_type: str) -> str:
        """Tenant-scoped key with a unique suffix"""
        ext = extension_for(mime_type) or "bin"
        return f"contracts/{tenant_id}/{uuid.uuid4()}.{ext}"

    @abstractmethod
    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None
    ) -> StorageMeta:
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def signed_url(self, key: str, ttl_seconds: int = 3600) -> str:
        pass


def _meta_for(key: str, data: bytes, content_type: str) -> StorageMeta:
    return StorageMeta(
        key=key,
        size_bytes=len(data),
        sha256=hashlib.sha256(data).hexdigest(),
        content_type=content_type,
    )


# =============================================================================
# LOCAL FILESYSTEM
# =============================================================================

class LocalStorage(BlobStore):
    """
    Filesystem storage.

    Signed URLs point at the API's /api/v1/files/{token} endpoint; the token
    is a short-lived JWT naming exactly one key.
    """

    def __init__(
        self,
        base_path: str = "./storage",
        signing_secret: str = "dev-signing-key-change-in-production",
        public_base_url: str = "http://localhost:8000"
    ):
        self.base_path = Path(base_path).resolve()
        self.signing_secret = signing_secret
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StorageFailure(f"Invalid storage key: {key}")
        return path

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None
    ) -> StorageMeta:
        path = self._path_for(key)
        tmp_path = path.with_name(path.name + ".part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)

            sidecar = {"contentType": content_type, "metadata": metadata or {}}
            path.with_name(path.name + ".meta.json").write_text(json.dumps(sidecar), encoding="utf-8")
        except OSError as e:
            logger.error(f"Local storage write failed for {key}: {e}")
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise StorageFailure() from e

        return _meta_for(key, data, content_type)

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageFailure(f"Failed to read {key}") from e

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            if not path.exists():
                return False
            path.unlink()
            path.with_name(path.name + ".meta.json").unlink(missing_ok=True)
            return True
        except OSError as e:
            raise StorageFailure(f"Failed to delete {key}") from e

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def content_type(self, key: str) -> str:
        sidecar = self._path_for(key)
        sidecar = sidecar.with_name(sidecar.name + ".meta.json")
        try:
            return json.loads(sidecar.read_text(encoding="utf-8")).get("contentType") or "application/octet-stream"
        except (OSError, ValueError):
            return "application/octet-stream"

    def signed_url(self, key: str, ttl_seconds: int = 3600) -> str:
        self._path_for(key)
        payload = {
            "key": key,
            "type": DOWNLOAD_TOKEN_TYPE,
            "exp": datetime.utcnow() + timedelta(seconds=ttl_seconds),
        }
        token = jwt.encode(payload, self.signing_secret, algorithm=DOWNLOAD_TOKEN_ALGORITHM)
        return f"{self.public_base_url}/api/v1/files/{token}"

    def resolve_token(self, token: str) -> Optional[str]:
        """Return the key a download token grants, or None if invalid/expired"""
        try:
            payload = jwt.decode(token, self.signing_secret, algorithms=[DOWNLOAD_TOKEN_ALGORITHM])
        except jwt.PyJWTError as e:
            logger.warning(f"Invalid download token: {e}")
            return None
        if payload.get("type") != DOWNLOAD_TOKEN_TYPE:
            return None
        return payload.get("key")


# =============================================================================
# S3
# =============================================================================

class S3Storage(BlobStore):
    """AWS S3 storage with server-side encryption"""

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None
    ) -> StorageMeta:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
                ServerSideEncryption="AES256",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 put failed for {key}: {e}")
            raise StorageFailure() from e

        return _meta_for(key, data, content_type)

    def get(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"Failed to read {key}") from e

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"Failed to delete {key}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageFailure(f"Failed to check {key}") from e
        except BotoCoreError as e:
            raise StorageFailure(f"Failed to check {key}") from e

    def signed_url(self, key: str, ttl_seconds: int = 3600) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"Failed to sign URL for {key}") from e


# Singleton storage
_storage: Optional[BlobStore] = None


def get_storage() -> BlobStore:
    """Get the configured storage backend"""
    global _storage
    if _storage is None:
        settings = get_settings()
        if settings.storage_backend == "s3":
            _storage = S3Storage(bucket=settings.s3_bucket_name, region=settings.aws_region)
        else:
            _storage = LocalStorage(
                base_path=settings.storage_local_path,
                signing_secret=settings.signed_url_secret,
                public_base_url=settings.public_base_url,
            )
        logger.info(f"Storage backend: {type(_storage).__name__}")
    return _storage


def set_storage(storage: Optional[BlobStore]) -> None:
    """Override the storage backend (tests, embedding)"""
    global _storage
    _storage = storage
