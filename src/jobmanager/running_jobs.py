"""
Detection of live jobs sharing the configured job name.

At most one live job may exist per name:
- none live: proceed
- one live, input still open: it is superseded, cancel it and proceed
- one live, input sealed: it is still working, stop (AlreadyRunningError)
- more than one live: the naming rule was broken elsewhere (NameCollisionError)
"""
import logging
from datetime import datetime
from typing import List, Optional

from jobmanager.errors import AlreadyRunningError, NameCollisionError
from jobmanager.job_service import JobService
from jobmanager.logging_utils import log_with_fields
from jobmanager.models import RemoteJob, utcnow

logger = logging.getLogger(__name__)


class RunningJobResolver:
    """Finds and resolves live jobs with a given name."""

    def __init__(self, job_service: JobService):
        self.job_service = job_service

    def find_active(self, job_name: str) -> List[RemoteJob]:
        """
        Find all live (non-terminal) jobs with the given name.

        Status is fetched one job at a time.

        Args:
            job_name: Job name to look for

        Returns:
            List of live jobs (empty if none)

        Raises:
            TransportError: If listing or a status fetch fails
        """
        job_ids = [summary.id for summary in self.job_service.list_jobs(job_name)]
        logger.debug(f"Found {len(job_ids)} jobs named {job_name}")

        active = []
        for job_id in job_ids:
            job = self.job_service.get_job(job_id)
            if not job.is_terminal:
                active.append(job)

        return active

    def resolve(self, job_name: str, now: Optional[datetime] = None) -> Optional[str]:
        """
        Make sure no live job blocks a new submission.

        Args:
            job_name: Configured job name
            now: Current time (default: utcnow())

        Returns:
            ID of a superseded job that was cancelled, or None

        Raises:
            AlreadyRunningError: A sealed job is still running (non-fatal)
            NameCollisionError: More than one live job has this name
            TransportError: If a remote call fails
        """
        active = self.find_active(job_name)

        if not active:
            logger.info("No running jobs, continuing...")
            return None

        if len(active) > 1:
            job_ids = [job.id for job in active]
            log_with_fields(
                logger, logging.ERROR, "More than one job with name found",
                jobs=job_ids
            )
            raise NameCollisionError(job_name, job_ids)

        job = active[0]

        if not job.input_done:
            # Input still open: a newer run has newer objects, no point resuming
            self.job_service.cancel_job(job.id)
            log_with_fields(
                logger, logging.INFO, "Cancelled superseded job",
                id=job.id, state=job.state
            )
            return job.id

        now = now or utcnow()
        seconds_running = 0
        if job.time_created is not None:
            seconds_running = int(round((now - job.time_created).total_seconds()))

        log_with_fields(
            logger, logging.INFO, "Job already running",
            id=job.id, state=job.state, secondsRunning=seconds_running
        )
        raise AlreadyRunningError(job.id, seconds_running)
