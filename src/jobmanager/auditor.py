"""
Auditing of previously submitted jobs.

Every job recorded in the ledger is audited exactly once after it has
completed: its duration and error count are logged as a structured
``audit`` record. Audited entries are dropped from the ledger once they
are older than the retention window; entries that were never audited are
kept no matter how old they are.

Status for all unaudited jobs is fetched in parallel and the whole
reconciliation fails if any fetch fails. Auditing itself runs in parallel
too, but each job succeeds or fails on its own; failed jobs stay unaudited
and are retried on the next run.
"""
import contextvars
import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from jobmanager.errors import AuditDeferredError
from jobmanager.job_service import JobService
from jobmanager.ledger import Ledger
from jobmanager.logging_utils import correlation_context, log_duration, log_with_fields
from jobmanager.models import (
    AuditEntry,
    DEFAULT_RETENTION_DAYS,
    RemoteJob,
    millis_between,
    utcnow,
)

logger = logging.getLogger(__name__)

# Called with (job, audit_entry, context); raising marks the audit failed
AuditHook = Callable[[RemoteJob, AuditEntry, Any], None]


def _run_in_context(pool: ThreadPoolExecutor, fn: Callable, *args):
    """Submit fn to pool, keeping the caller's correlation IDs."""
    return pool.submit(contextvars.copy_context().run, fn, *args)


class AuditReconciler:
    """Audits completed jobs and prunes the ledger."""

    def __init__(
        self,
        job_service: JobService,
        enrich_audit: Optional[AuditHook] = None,
        retention_seconds: float = DEFAULT_RETENTION_DAYS * 24 * 3600
    ):
        """
        Initialize reconciler.

        Args:
            job_service: Job service to fetch status from
            enrich_audit: Hook called for every completed job before it is
                marked audited (optional)
            retention_seconds: Age after which audited entries are dropped
        """
        self.job_service = job_service
        self.enrich_audit = enrich_audit
        self.retention_seconds = retention_seconds

    def partition(self, ledger: Ledger, now: datetime) -> Tuple[List[str], List[str]]:
        """
        Split ledger entries into jobs to audit and jobs past retention.

        An entry can be in both lists.

        Returns:
            Tuple of (to_audit, to_expire) job ID lists
        """
        to_audit = []
        to_expire = []
        for job_id, record in ledger.items():
            if not record.audited:
                to_audit.append(job_id)
            if record.age_seconds(now) > self.retention_seconds:
                to_expire.append(job_id)
        return to_audit, to_expire

    def fetch_jobs(self, job_ids: List[str]) -> Dict[str, RemoteJob]:
        """
        Fetch status for all jobs in parallel.

        Fails as soon as one fetch fails.

        Raises:
            TransportError: The first fetch error
        """
        if not job_ids:
            return {}

        with ThreadPoolExecutor(max_workers=len(job_ids)) as pool:
            futures = {
                _run_in_context(pool, self.job_service.get_job, job_id): job_id
                for job_id in job_ids
            }
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)

            for future in done:
                error = future.exception()
                if error is not None:
                    for other in pending:
                        other.cancel()
                    logger.error(f"Failed to fetch job {futures[future]}: {error}")
                    raise error

            return {futures[future]: future.result() for future in done}

    def audit_job(self, job: RemoteJob, context: Any = None) -> AuditEntry:
        """
        Audit one job.

        Args:
            job: Job status
            context: Passed to the enrichment hook

        Returns:
            The logged audit entry

        Raises:
            AuditDeferredError: If the job hasn't completed yet
            Exception: Whatever the enrichment hook raised
        """
        if job.is_pending:
            raise AuditDeferredError(f"Job {job.id} is still {job.state}")

        duration = None
        if job.time_created is not None and job.time_done is not None:
            duration = millis_between(job.time_created, job.time_done)

        entry = AuditEntry(
            job_id=job.id,
            job_errors=job.stats.errors,
            time_created=job.time_created,
            job_duration_millis=duration,
        )

        if self.enrich_audit is not None:
            try:
                self.enrich_audit(job, entry, context)
            except Exception as e:
                log_with_fields(
                    logger, logging.ERROR, "preaudit error",
                    jobId=job.id, err=str(e)
                )
                raise

        log_with_fields(logger, logging.INFO, "audit", **entry.to_log_fields())
        return entry

    def _audit_one(self, job: RemoteJob, context: Any) -> AuditEntry:
        with correlation_context(job_id=job.id):
            return self.audit_job(job, context)

    def audit_jobs(self, jobs: Dict[str, RemoteJob], context: Any = None) -> Dict[str, bool]:
        """
        Audit all jobs in parallel, independently of each other.

        Args:
            jobs: Mapping of ledger job ID to fetched status
            context: Passed to the enrichment hook

        Returns:
            Mapping of job ID to whether its audit succeeded
        """
        if not jobs:
            return {}

        results: Dict[str, bool] = {}
        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            futures = {
                _run_in_context(pool, self._audit_one, job, context): job_id
                for job_id, job in jobs.items()
            }
            wait(futures)

        for future, job_id in futures.items():
            error = future.exception()
            if isinstance(error, AuditDeferredError):
                logger.info(str(error))
            results[job_id] = error is None

            log_with_fields(
                logger, logging.DEBUG, "got status for job",
                jobId=job_id, status="ok" if results[job_id] else "fail"
            )

        return results

    def reconcile(
        self,
        ledger: Ledger,
        context: Any = None,
        now: Optional[datetime] = None
    ) -> Ledger:
        """
        Audit completed jobs and drop old audited entries.

        The given ledger is not modified.

        Args:
            ledger: Ledger as loaded at the start of the run
            context: Passed to the enrichment hook
            now: Current time (default: utcnow())

        Returns:
            Updated ledger

        Raises:
            TransportError: If any status fetch fails; nothing is changed
        """
        now = now or utcnow()
        updated = {job_id: record.model_copy() for job_id, record in ledger.items()}
        to_audit, to_expire = self.partition(updated, now)

        if not to_audit:
            logger.info("No jobs to audit.")
        else:
            logger.info(f"Auditing {len(to_audit)} previous jobs.")
            with log_duration("audit_previous_jobs", logger, jobs=len(to_audit)):
                jobs = self.fetch_jobs(to_audit)
                results = self.audit_jobs(jobs, context)

            for job_id, ok in results.items():
                if ok:
                    updated[job_id].audited = True

        for job_id in to_expire:
            if updated[job_id].audited:
                del updated[job_id]
                logger.info(f"Dropped audited job {job_id} from ledger")
            else:
                logger.warning(
                    f"Job {job_id} is past retention but was never audited, keeping it"
                )

        return updated
