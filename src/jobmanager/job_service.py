"""
Job service interface.

The job service runs compute jobs over objects in the object store. The
job manager only needs a handful of calls; a concrete client is provided
by the plugin module (see jobmanager.plugins).
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from jobmanager.models import RemoteJob

logger = logging.getLogger(__name__)


@dataclass
class JobSummary:
    """Entry returned by a job listing."""
    id: str
    name: str


class JobService(ABC):
    """
    Remote job service.

    Implementations raise JobServiceError (or another TransportError) when
    a call fails. Transport retries, if any, happen inside the client.
    """

    @abstractmethod
    def create_job(self, definition: Dict[str, Any]) -> str:
        """Create a job and return its ID."""

    @abstractmethod
    def add_input_objects(self, job_id: str, objects: List[str], end: bool = True) -> None:
        """Add input objects to a job; end=True seals its input."""

    @abstractmethod
    def list_jobs(self, name: str) -> Iterable[JobSummary]:
        """List all jobs with the given name."""

    @abstractmethod
    def get_job(self, job_id: str) -> RemoteJob:
        """Fetch full status for a job."""

    @abstractmethod
    def cancel_job(self, job_id: str) -> None:
        """Cancel a job."""
