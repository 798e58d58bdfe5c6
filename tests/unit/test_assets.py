"""Unit tests for directory setup and asset upload."""
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from jobmanager.assets import AssetPublisher, plan_directories
from jobmanager.errors import AssetError, ObjectStoreError


class TestPlanDirectories:
    """Tests for directory planning."""

    def test_job_root_added(self):
        """Job root is always created."""
        assert plan_directories(None, "/poseidon/stor/gc") == ["/poseidon/stor/gc"]

    def test_asset_dir_added(self):
        """Asset parent directory is created."""
        planned = plan_directories([], "/poseidon/stor/gc", "/poseidon/stor/gc/assets/bundle.tar.gz")
        assert planned == ["/poseidon/stor/gc", "/poseidon/stor/gc/assets"]

    def test_sorted_parents_first(self):
        """Parents sort before children."""
        planned = plan_directories(
            ["/poseidon/stor/gc/out/b", "/poseidon/stor/gc/out"],
            "/poseidon/stor/gc"
        )
        assert planned == [
            "/poseidon/stor/gc",
            "/poseidon/stor/gc/out",
            "/poseidon/stor/gc/out/b",
        ]

    def test_deduplicated(self):
        """Duplicates are created once."""
        planned = plan_directories(
            ["/poseidon/stor/gc", "/poseidon/stor/x", "/poseidon/stor/x"],
            "/poseidon/stor/gc",
            "/poseidon/stor/gc/bundle.tar.gz"
        )
        assert planned == ["/poseidon/stor/gc", "/poseidon/stor/x"]

    def test_input_not_modified(self):
        """The configured list is left alone."""
        configured = ["/poseidon/stor/x"]
        plan_directories(configured, "/poseidon/stor/gc")
        assert configured == ["/poseidon/stor/x"]


class TestSetupDirectories:
    """Tests for directory creation."""

    def test_created_in_order(self, store):
        """Directories are created in sorted order."""
        publisher = AssetPublisher(store)
        created = publisher.setup_directories(["/poseidon/stor/a/b"], "/poseidon/stor/a")
        assert created == ["/poseidon/stor/a", "/poseidon/stor/a/b"]
        assert store.directories == ["/poseidon/stor/a", "/poseidon/stor/a/b"]

    def test_failure_is_fatal(self, store):
        """A failed creation stops directory setup."""
        store.mkdir_errors["/poseidon/stor/a"] = ObjectStoreError("denied")
        publisher = AssetPublisher(store)
        with pytest.raises(ObjectStoreError):
            publisher.setup_directories(["/poseidon/stor/a/b"], "/poseidon/stor/a")
        assert store.directories == []


class TestPublishAsset:
    """Tests for asset upload."""

    def test_no_asset_is_noop(self, store):
        """Nothing configured, nothing uploaded."""
        assert AssetPublisher(store).publish_asset(None, None) is False
        assert store.calls == []

    def test_upload(self, store, tmp_path):
        """Asset is uploaded with the replication factor."""
        asset = tmp_path / "bundle.tar.gz"
        asset.write_bytes(b"bundle-bytes")

        uploaded = AssetPublisher(store).publish_asset(
            str(asset), "/poseidon/stor/gc/bundle.tar.gz", copies=2
        )

        assert uploaded is True
        assert store.objects["/poseidon/stor/gc/bundle.tar.gz"] == b"bundle-bytes"
        assert store.copies["/poseidon/stor/gc/bundle.tar.gz"] == 2

    def test_upload_every_time(self, store, tmp_path):
        """Asset is uploaded on every call, even if unchanged."""
        asset = tmp_path / "bundle.tar.gz"
        asset.write_bytes(b"bundle-bytes")
        publisher = AssetPublisher(store)

        publisher.publish_asset(str(asset), "/poseidon/stor/gc/bundle.tar.gz")
        publisher.publish_asset(str(asset), "/poseidon/stor/gc/bundle.tar.gz")

        assert store.calls.count(('put', "/poseidon/stor/gc/bundle.tar.gz")) == 2

    def test_missing_file(self, store, tmp_path):
        """Missing local file is fatal."""
        with pytest.raises(AssetError, match="Cannot stat"):
            AssetPublisher(store).publish_asset(
                str(tmp_path / "missing"), "/poseidon/stor/gc/bundle.tar.gz"
            )
        assert store.calls == []

    def test_not_a_file(self, store, tmp_path):
        """A directory is not an asset."""
        with pytest.raises(AssetError, match="isn't a file"):
            AssetPublisher(store).publish_asset(
                str(tmp_path), "/poseidon/stor/gc/bundle.tar.gz"
            )
