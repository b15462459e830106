"""Object storage backends.

Supports: S3 and S3-compatible stores (MinIO), and a local filesystem store
for development. Keys are content-addressed by the caller; backends never
check for collisions and overwrite silently.
"""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from tubely.core.config import settings
from tubely.core.errors import ObjectStoreError

logger = logging.getLogger(__name__)


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # s3, minio, aws, local
    bucket: str = ""
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    store_host: Optional[str] = None
    local_path: str = "./assets"
    base_url: str = "http://localhost:8091"


class ObjectStore(ABC):
    """Abstract base class for object store backends."""

    @abstractmethod
    async def put(self, key: str, content_type: str, stream: BinaryIO) -> None:
        """Write ``stream`` under ``key``.

        Raises:
            ObjectStoreError: If the write fails
        """

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the public URL for ``key``."""


class S3ObjectStore(ObjectStore):
    """S3/MinIO compatible object store."""

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
            }

            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            self._client = boto3.client(**client_kwargs)

        return self._client

    def _put_object(self, key: str, content_type: str, stream: BinaryIO) -> None:
        self._get_client().put_object(
            Bucket=self.config.bucket,
            Key=key,
            Body=stream,
            ContentType=content_type,
        )

    async def put(self, key: str, content_type: str, stream: BinaryIO) -> None:
        """Upload a stream to S3.

        The blocking boto3 call runs in a worker thread; cancelling the
        awaiting task abandons the result, it cannot interrupt the socket.
        """
        try:
            await asyncio.to_thread(self._put_object, key, content_type, stream)
        except (BotoCoreError, ClientError, OSError) as e:
            raise ObjectStoreError(
                f"Couldn't upload object {key} to bucket {self.config.bucket}", e
            ) from e

    def get_url(self, key: str) -> str:
        host = self.config.store_host or f"s3.{self.config.region}.amazonaws.com"
        return f"https://{self.config.bucket}.{host}/{key}"


class LocalObjectStore(ObjectStore):
    """Local filesystem object store, served under ``/assets``."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_url = config.base_url.rstrip("/")

    def ensure_root(self) -> None:
        """Create the assets directory if it does not exist."""
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def _write(self, key: str, stream: BinaryIO) -> None:
        dest_path = self._get_full_path(key)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        with open(dest_path, "wb") as f:
            shutil.copyfileobj(stream, f)

    async def put(self, key: str, content_type: str, stream: BinaryIO) -> None:
        try:
            await asyncio.to_thread(self._write, key, stream)
        except OSError as e:
            raise ObjectStoreError(f"Couldn't write asset {key}", e) from e

    def get_url(self, key: str) -> str:
        return f"{self.base_url}/assets/{key}"


def storage_config_from_settings() -> StorageConfig:
    """Build a StorageConfig from application settings."""
    return StorageConfig(
        backend=settings.STORAGE_BACKEND,
        bucket=settings.S3_BUCKET,
        region=settings.S3_REGION,
        access_key=settings.S3_ACCESS_KEY,
        secret_key=settings.S3_SECRET_KEY,
        endpoint_url=settings.S3_ENDPOINT_URL,
        store_host=settings.store_host,
        local_path=settings.ASSETS_ROOT,
        base_url=settings.ASSETS_BASE_URL,
    )


def create_object_store(config: Optional[StorageConfig] = None) -> ObjectStore:
    """Create the object store backend selected by configuration."""
    if config is None:
        config = storage_config_from_settings()

    backend_type = config.backend.lower()

    if backend_type == "local":
        store = LocalObjectStore(config)
        store.ensure_root()
        return store
    elif backend_type in ("s3", "minio", "aws"):
        return S3ObjectStore(config)
    else:
        raise ValueError(f"Unsupported storage backend: {backend_type}")


_object_store: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
    """Get the process-wide object store instance."""
    global _object_store
    if _object_store is None:
        _object_store = create_object_store()
        logger.info("Object store initialised", extra={"backend": settings.STORAGE_BACKEND})
    return _object_store
