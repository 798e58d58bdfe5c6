"""
Security utilities for the job manager.

Validates job names and object store paths before they reach the
remote services.
"""
import logging
import posixpath
import re
from pathlib import Path

logger = logging.getLogger(__name__)


class SecurityError(ValueError):
    """Security validation failed."""
    pass


def validate_job_name(job_name: str) -> str:
    """
    Validate job name format.

    Job names must:
    - Only contain alphanumeric, dots, dashes, underscores
    - Not contain path separators or path traversal
    - Be between 1 and 200 characters

    Args:
        job_name: Job name to validate

    Returns:
        The validated job name

    Raises:
        SecurityError: If job name is invalid

    Example:
        >>> validate_job_name("manta-gc")
        'manta-gc'
    """
    if not job_name:
        raise SecurityError("Empty job name")

    if len(job_name) > 200:
        raise SecurityError(f"Job name too long (max 200 chars): {job_name}")

    if not re.match(r'^[a-zA-Z0-9._-]+$', job_name):
        raise SecurityError(
            f"Invalid job name format: {job_name}\n"
            f"Only alphanumeric, dots, dashes, and underscores allowed"
        )

    if '..' in job_name:
        raise SecurityError(f"Job name cannot contain ..: {job_name}")

    return job_name


def validate_object_path(path: str, description: str = "object path") -> str:
    """
    Validate an object store path.

    Object paths are absolute, slash separated, and start with the bucket:
    ``/bucket/dir/object``.

    Args:
        path: Object path to validate
        description: Description for error messages

    Returns:
        Normalized path (no trailing slash)

    Raises:
        SecurityError: If path is invalid
    """
    if not path:
        raise SecurityError(f"Empty {description}")

    if '\0' in path:
        raise SecurityError(f"Null byte in {description}: {path!r}")

    if not path.startswith('/'):
        raise SecurityError(f"{description} must be absolute: {path}")

    if '..' in path.split('/'):
        raise SecurityError(f"Path traversal detected in {description}: {path}")

    normalized = posixpath.normpath(path)
    if normalized == '/':
        raise SecurityError(f"{description} must name a bucket: {path}")

    return normalized


def validate_local_path(path: str, description: str = "path") -> Path:
    """
    Validate a local file system path.

    Checks for null bytes and path traversal and resolves the path.

    Args:
        path: Path to validate
        description: Description for error messages

    Returns:
        Resolved absolute Path object

    Raises:
        SecurityError: If path is invalid or unsafe
    """
    if not path:
        raise SecurityError(f"Empty {description}")

    if '\0' in path:
        raise SecurityError(f"Null byte in {description}: {path!r}")

    p = Path(path)
    if '..' in p.parts:
        raise SecurityError(f"Path traversal detected in {description}: {path}")

    p = p.resolve()
    logger.debug(f"Validated {description}: {p}")
    return p
