"""
Directory setup and asset upload.

The asset bundle is uploaded on every run; the store's last-writer-wins
semantics apply.
"""
import logging
import os
import posixpath
from typing import List, Optional

from jobmanager.errors import AssetError
from jobmanager.object_store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_ASSET_COPIES = 2


def plan_directories(
    directories: Optional[List[str]],
    job_root: str,
    asset_object: Optional[str] = None
) -> List[str]:
    """
    Build the ordered list of directories to create.

    Adds the job root and the asset's parent directory, drops duplicates
    and sorts so that parents come before their children.

    Args:
        directories: Extra directories from configuration
        job_root: Job root directory
        asset_object: Asset object path (optional)

    Returns:
        Sorted list of unique directories
    """
    planned = list(directories or [])

    if job_root not in planned:
        planned.append(job_root)

    if asset_object:
        asset_dir = posixpath.dirname(asset_object)
        if asset_dir not in planned:
            planned.append(asset_dir)

    return sorted(set(planned))


class AssetPublisher:
    """Creates job directories and uploads the job asset."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def setup_directories(
        self,
        directories: Optional[List[str]],
        job_root: str,
        asset_object: Optional[str] = None
    ) -> List[str]:
        """
        Create all job directories, one after the other.

        Returns:
            Directories created, in creation order

        Raises:
            ObjectStoreError: If any creation fails
        """
        planned = plan_directories(directories, job_root, asset_object)
        logger.info(f"Creating directories: {', '.join(planned)}")

        for directory in planned:
            self.store.ensure_directory(directory)

        return planned

    def publish_asset(
        self,
        asset_file: Optional[str],
        asset_object: Optional[str],
        copies: int = DEFAULT_ASSET_COPIES
    ) -> bool:
        """
        Upload the local asset file to its object path.

        Args:
            asset_file: Local file (no-op if None)
            asset_object: Destination object path
            copies: Replication factor

        Returns:
            True if an asset was uploaded

        Raises:
            AssetError: If the local file is missing or not a regular file
            ObjectStoreError: If the upload fails
        """
        if asset_file is None:
            return False

        if not asset_object:
            raise AssetError("asset_object is required when asset_file is set")

        logger.info("Setting up asset object.")

        try:
            stats = os.stat(asset_file)
        except OSError as e:
            raise AssetError(f"Cannot stat asset file {asset_file}: {e}")

        if not os.path.isfile(asset_file):
            raise AssetError(f"{asset_file} isn't a file")

        with open(asset_file, 'rb') as f:
            self.store.put_object(asset_object, f, stats.st_size, copies=copies)

        logger.info(f"Uploaded asset {asset_file} -> {asset_object} ({stats.st_size} bytes)")
        return True
