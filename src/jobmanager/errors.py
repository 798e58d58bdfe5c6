"""
Error kinds raised while running a job.

Every error carries a ``fatal`` flag. Non-fatal errors are expected
conditions that end a run cleanly (the job is disabled, there is nothing
to process, the job is still running). Fatal errors are propagated to the
caller once the run has been finalized.
"""
from typing import List


class JobManagerError(Exception):
    """Base class for all job manager errors."""
    fatal = True
    reason = "Error"


class JobDisabledError(JobManagerError):
    """Job (or all jobs) disabled by configuration."""
    fatal = False
    reason = "JobDisabled"


class NoInputObjectsError(JobManagerError):
    """Object lister returned no objects."""
    fatal = False
    reason = "NoInputObjects"


class AlreadyRunningError(JobManagerError):
    """A sealed, live job with the same name is still running."""
    fatal = False
    reason = "AlreadyRunning"

    def __init__(self, job_id: str, seconds_running: int):
        super().__init__(
            f"Job {job_id} already running ({seconds_running}s)"
        )
        self.job_id = job_id
        self.seconds_running = seconds_running


class AuditDeferredError(JobManagerError):
    """Job has not completed yet; audit again on a later run."""
    fatal = False
    reason = "AuditDeferred"


class NameCollisionError(JobManagerError):
    """More than one live job shares the configured name."""
    reason = "NameCollision"

    def __init__(self, job_name: str, job_ids: List[str]):
        super().__init__(
            f"More than one live job named '{job_name}': {', '.join(job_ids)}"
        )
        self.job_name = job_name
        self.job_ids = job_ids


class JobDefinitionError(JobManagerError):
    """Job definition is malformed or names a different job."""
    reason = "ValidationError"


class LedgerCorruptionError(JobManagerError):
    """Stored ledger document could not be parsed."""
    reason = "LedgerCorruption"


class AssetError(JobManagerError):
    """Local asset file is missing or not a regular file."""
    reason = "AssetError"


class TransportError(JobManagerError):
    """A remote call failed."""
    reason = "TransportError"


class ObjectStoreError(TransportError):
    """Error during object store operations."""
    pass


class ObjectNotFoundError(ObjectStoreError):
    """Object (or its parent directory) does not exist."""
    pass


class JobServiceError(TransportError):
    """Error during job service operations."""
    pass
