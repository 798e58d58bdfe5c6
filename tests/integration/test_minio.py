"""Integration tests for the Minio object store."""
import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from minio import Minio

from jobmanager.errors import ObjectNotFoundError
from jobmanager.ledger import LedgerStore
from jobmanager.models import JobManagerConfig, JobRecord
from jobmanager.object_store import MinioObjectStore


@pytest.fixture
def object_store(minio_server):
    config = JobManagerConfig.MinioConfig(
        endpoint=minio_server['endpoint'],
        access_key=minio_server['access_key'],
        secret_key=minio_server['secret_key'],
        secure=minio_server['secure'],
    )
    return MinioObjectStore(config)


class TestMinioObjectStore:
    """Tests for MinioObjectStore against a live server."""

    def test_connection(self, object_store):
        """Connection test succeeds against a running server."""
        assert object_store.test_connection()

    def test_missing_bucket(self, object_store):
        """Reading from a missing bucket is a not-found error."""
        with pytest.raises(ObjectNotFoundError):
            object_store.get_object("/no-such-bucket/jobs.json")

    def test_missing_object(self, object_store):
        """Reading a missing object is a not-found error."""
        object_store.ensure_directory("/missing-test")
        with pytest.raises(ObjectNotFoundError):
            object_store.get_object("/missing-test/jobs.json")

    def test_put_and_get(self, object_store, minio_server):
        """Stored objects can be read back and carry their copy count."""
        object_store.ensure_directory("/assets-test/gc")
        object_store.put_object(
            "/assets-test/gc/bundle.tar.gz", io.BytesIO(b"bundle"), 6, copies=2
        )

        assert object_store.get_object("/assets-test/gc/bundle.tar.gz") == b"bundle"

        client = Minio(
            minio_server['endpoint'],
            access_key=minio_server['access_key'],
            secret_key=minio_server['secret_key'],
            secure=minio_server['secure']
        )
        stat = client.stat_object("assets-test", "gc/bundle.tar.gz")
        assert stat.metadata.get("x-amz-meta-copies") == "2"

    def test_ensure_directory_idempotent(self, object_store, minio_server):
        """Creating a directory twice is fine and leaves a marker object."""
        object_store.ensure_directory("/dirs-test/gc/out")
        object_store.ensure_directory("/dirs-test/gc/out")

        client = Minio(
            minio_server['endpoint'],
            access_key=minio_server['access_key'],
            secret_key=minio_server['secret_key'],
            secure=minio_server['secure']
        )
        names = [o.object_name for o in client.list_objects("dirs-test", prefix="gc/")]
        assert "gc/out/" in names

    def test_ledger_round_trip(self, object_store):
        """A ledger saved to Minio loads back unchanged."""
        object_store.ensure_directory("/ledger-test/gc")
        ledger_store = LedgerStore(object_store, "/ledger-test/gc/jobs.json")

        assert ledger_store.load() == {}

        ledger = {"job-1": JobRecord(time_created="2024-01-01T00:00:00Z", audited=True)}
        ledger_store.save(ledger)

        assert ledger_store.load() == ledger
