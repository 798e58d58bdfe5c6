"""
Object store access for the job manager.

Object paths are absolute and start with the bucket name:
``/bucket/dir/object``. Directories are prefixes; creating one writes an
empty ``dir/`` marker object so that it shows up in listings.

Provides:
- ObjectStore: the operations the job manager needs
- MinioObjectStore: ObjectStore backed by a Minio (S3) server
"""
import io
import logging
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional, Tuple
from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError, MaxRetryError

from jobmanager.errors import ObjectNotFoundError, ObjectStoreError
from jobmanager.models import JobManagerConfig

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "ResourceNotFound"}


def split_object_path(path: str) -> Tuple[str, str]:
    """
    Split an object path into bucket and object name.

    Args:
        path: Path like /bucket/dir/object

    Returns:
        Tuple of (bucket, object_name); object_name is "" for a bare bucket

    Raises:
        ObjectStoreError: If the path does not name a bucket
    """
    parts = path.strip('/').split('/', 1)
    if not parts[0]:
        raise ObjectStoreError(f"Object path does not name a bucket: {path!r}")
    bucket = parts[0]
    object_name = parts[1] if len(parts) > 1 else ""
    return bucket, object_name


class ObjectStore(ABC):
    """Operations the job manager performs against the object store."""

    @abstractmethod
    def get_object(self, path: str) -> bytes:
        """
        Fetch an object.

        Raises:
            ObjectNotFoundError: If the object or its bucket doesn't exist
            ObjectStoreError: On any other failure
        """

    @abstractmethod
    def put_object(
        self,
        path: str,
        stream: BinaryIO,
        size: int,
        copies: Optional[int] = None
    ) -> None:
        """
        Store an object, replacing any existing one.

        Raises:
            ObjectNotFoundError: If the parent directory doesn't exist
            ObjectStoreError: On any other failure
        """

    @abstractmethod
    def ensure_directory(self, path: str) -> None:
        """
        Create a directory if needed. Idempotent.

        Raises:
            ObjectStoreError: If creation fails
        """

    def put_bytes(self, path: str, data: bytes, copies: Optional[int] = None) -> None:
        """Store an in-memory object."""
        self.put_object(path, io.BytesIO(data), len(data), copies=copies)


class MinioObjectStore(ObjectStore):
    """
    ObjectStore backed by Minio.

    Replication factor is recorded as object metadata; the server decides
    actual redundancy.
    """

    def __init__(self, config: JobManagerConfig.MinioConfig, client: Optional[Minio] = None):
        """
        Initialize Minio object store.

        Args:
            config: Minio configuration from job manager config
            client: Pre-built client (default: connect using config)
        """
        self.config = config
        self.client: Optional[Minio] = client
        if self.client is None:
            self._connect()

    def _connect(self) -> None:
        """Establish connection to Minio server."""
        try:
            self.client = Minio(
                self.config.endpoint,
                access_key=self.config.access_key,
                secret_key=self.config.secret_key,
                secure=self.config.secure
            )
            logger.info(f"Connected to Minio: {self.config.endpoint}")

        except ValueError as e:
            raise ObjectStoreError(f"Failed to connect to Minio: {e}")

    def _translate(self, e: Exception, action: str, path: str) -> ObjectStoreError:
        if isinstance(e, S3Error) and e.code in NOT_FOUND_CODES:
            return ObjectNotFoundError(f"{path} not found ({e.code})")
        return ObjectStoreError(f"Failed to {action} {path}: {e}")

    def get_object(self, path: str) -> bytes:
        bucket, object_name = split_object_path(path)
        response = None
        try:
            logger.debug(f"Downloading s3://{bucket}/{object_name} to memory")
            response = self.client.get_object(bucket, object_name)
            data = response.read()
            logger.debug(f"Downloaded {len(data)} bytes from s3://{bucket}/{object_name}")
            return data

        except (S3Error, HTTPError) as e:
            raise self._translate(e, "download", path)
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def put_object(
        self,
        path: str,
        stream: BinaryIO,
        size: int,
        copies: Optional[int] = None
    ) -> None:
        bucket, object_name = split_object_path(path)
        if not object_name:
            raise ObjectStoreError(f"Cannot write an object at bucket root: {path}")

        metadata = {"copies": str(copies)} if copies else None
        try:
            logger.debug(f"Uploading s3://{bucket}/{object_name} ({size} bytes)")
            self.client.put_object(
                bucket,
                object_name,
                stream,
                size,
                content_type="application/octet-stream",
                metadata=metadata
            )
            logger.info(f"Uploaded: s3://{bucket}/{object_name}")

        except (S3Error, HTTPError) as e:
            raise self._translate(e, "upload", path)

    def ensure_directory(self, path: str) -> None:
        bucket, object_name = split_object_path(path)
        try:
            if not self.client.bucket_exists(bucket):
                self.client.make_bucket(bucket)
                logger.info(f"Created bucket: {bucket}")

            if object_name:
                marker = object_name.rstrip('/') + '/'
                self.client.put_object(bucket, marker, io.BytesIO(b""), 0)
                logger.debug(f"Ensured directory: s3://{bucket}/{marker}")

        except (S3Error, HTTPError) as e:
            raise ObjectStoreError(f"Failed to create directory {path}: {e}")

    def test_connection(self) -> bool:
        """
        Test connection to Minio server.

        Returns:
            True if connection works, False otherwise
        """
        try:
            list(self.client.list_buckets())
            return True

        except (S3Error, MaxRetryError) as e:
            logger.error(f"Minio connection test failed: {e}")
            return False
