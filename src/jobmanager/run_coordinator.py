"""
Run coordinator - one scheduled invocation of a job.

A run is a fixed sequence of stages over a RunContext:

    stop_if_disabled -> audit_previous_jobs -> check_running_jobs ->
    setup_directories -> setup_asset_object -> get_job_objects ->
    get_job_definition -> create_job

Each stage either continues, stops the run cleanly (a non-fatal
JobManagerError such as JobDisabledError) or stops it with an error. Whatever
happens, the ledger is then written back and one ``audit`` record
summarizing the run is logged. Fatal errors are re-raised afterwards, so the
caller always sees the error that stopped the run, never one from the
finalization.

Runs must not overlap; nothing here locks the ledger.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from jobmanager.assets import AssetPublisher
from jobmanager.auditor import AuditHook, AuditReconciler
from jobmanager.errors import (
    JobDefinitionError,
    JobDisabledError,
    JobManagerError,
    NoInputObjectsError,
    ObjectNotFoundError,
    AlreadyRunningError,
)
from jobmanager.job_service import JobService
from jobmanager.ledger import LedgerStore
from jobmanager.logging_utils import correlation_context, log_with_fields, set_correlation_ids
from jobmanager.models import JobManagerConfig, format_timestamp, millis_between, utcnow
from jobmanager.object_store import ObjectStore
from jobmanager.run_context import RunContext, RunMetrics
from jobmanager.running_jobs import RunningJobResolver
from jobmanager.submitter import JobSubmitter, prepare_definition

logger = logging.getLogger(__name__)

ObjectLister = Callable[[RunContext], List[str]]
DefinitionProvider = Callable[[RunContext], Dict[str, Any]]
Stage = Callable[[RunContext], None]


class StageAction(Enum):
    """What the pipeline does after a stage."""
    CONTINUE = "continue"
    STOP_CLEAN = "stop_clean"
    STOP_ERROR = "stop_error"


@dataclass
class StageResult:
    """Outcome of a single stage."""
    action: StageAction
    error: Optional[Exception] = None

    @classmethod
    def from_error(cls, error: Exception) -> 'StageResult':
        """Classify an error raised by a stage."""
        if isinstance(error, JobManagerError) and not error.fatal:
            return cls(StageAction.STOP_CLEAN, error)
        return cls(StageAction.STOP_ERROR, error)


class RunOutcome(Enum):
    """How a run ended."""
    STARTED = "started"
    DRY_RUN = "dry_run"
    DISABLED = "disabled"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RunResult:
    """Summary of a finished run, handed to listeners."""
    outcome: RunOutcome
    reason: Optional[str]
    job_id: Optional[str]
    cancelled_job_id: Optional[str]
    metrics: RunMetrics
    start_time: datetime
    end_time: datetime
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.outcome == RunOutcome.FAILED


def _reason(error: Exception) -> str:
    if isinstance(error, JobManagerError):
        return error.reason
    return type(error).__name__


class JobCoordinator:
    """Runs one job: audit previous runs, resolve conflicts, submit."""

    def __init__(
        self,
        config: JobManagerConfig,
        store: ObjectStore,
        job_service: JobService,
        list_input_objects: ObjectLister,
        provide_job_definition: DefinitionProvider,
        enrich_audit: Optional[AuditHook] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize coordinator.

        Args:
            config: Job configuration
            store: Object store for the ledger, directories and asset
            job_service: Job service
            list_input_objects: Returns the object paths to process
            provide_job_definition: Returns the job definition
            enrich_audit: Hook run for each completed job before it is
                marked audited (optional)
            clock: Source of the current time
        """
        self.config = config
        self.store = store
        self.job_service = job_service
        self.list_input_objects = list_input_objects
        self.provide_job_definition = provide_job_definition
        self.clock = clock

        self.ledger_store = LedgerStore(store, config.ledger_object)
        self.reconciler = AuditReconciler(
            job_service,
            enrich_audit=enrich_audit,
            retention_seconds=config.retention_seconds
        )
        self.resolver = RunningJobResolver(job_service)
        self.publisher = AssetPublisher(store)
        self.submitter = JobSubmitter(job_service)

        self._listeners: List[Callable[[RunResult], None]] = []

    def add_listener(self, listener: Callable[[RunResult], None]) -> None:
        """Register a callback invoked with the RunResult after every run."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[RunResult], None]) -> None:
        """Unregister a callback."""
        self._listeners.remove(listener)

    @property
    def stages(self) -> List[Tuple[str, Stage]]:
        """Pipeline stages, in order."""
        return [
            ("stop_if_disabled", self._stop_if_disabled),
            ("audit_previous_jobs", self._audit_previous_jobs),
            ("check_running_jobs", self._check_running_jobs),
            ("setup_directories", self._setup_directories),
            ("setup_asset_object", self._setup_asset_object),
            ("get_job_objects", self._get_job_objects),
            ("get_job_definition", self._get_job_definition),
            ("create_job", self._create_job),
        ]

    # =========================================================================
    # Entry points
    # =========================================================================

    def run(self) -> RunResult:
        """
        Run the full pipeline once.

        Returns:
            RunResult for successful and cleanly stopped runs

        Raises:
            Exception: The fatal error that stopped the run
        """
        with correlation_context(job_name=self.config.job_name):
            ctx = RunContext(config=self.config, start_time=self.clock())

            result = StageResult(StageAction.CONTINUE)
            for name, stage in self.stages:
                result = self._run_stage(name, stage, ctx)
                if result.action != StageAction.CONTINUE:
                    break

            run_result = self._finalize(ctx, result)

        if result.action == StageAction.STOP_ERROR:
            raise result.error
        return run_result

    def reconcile_only(self) -> RunContext:
        """
        Audit previous jobs and save the ledger without submitting anything.

        Raises:
            Exception: Any error from loading, reconciling or saving
        """
        with correlation_context(job_name=self.config.job_name):
            ctx = RunContext(config=self.config, start_time=self.clock())
            self._audit_previous_jobs(ctx)
            self.ledger_store.save(ctx.ledger)
            return ctx

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _run_stage(self, name: str, stage: Stage, ctx: RunContext) -> StageResult:
        logger.debug(f"Stage: {name}")
        try:
            stage(ctx)
        except Exception as e:
            return StageResult.from_error(e)
        return StageResult(StageAction.CONTINUE)

    def _stop_if_disabled(self, ctx: RunContext) -> None:
        config = ctx.config
        if config.force_run:
            logger.info("Forcing job run")
            return

        if config.disable_all_jobs:
            raise JobDisabledError("all jobs are disabled")

        if not config.job_enabled:
            raise JobDisabledError(f"{config.job_name} is disabled")

    def _audit_previous_jobs(self, ctx: RunContext) -> None:
        logger.info("Auditing previous jobs.")
        ledger = self.ledger_store.load()
        ctx.ledger = ledger
        ctx.ledger_loaded = True
        ctx.ledger = self.reconciler.reconcile(ledger, context=ctx, now=self.clock())

    def _check_running_jobs(self, ctx: RunContext) -> None:
        try:
            ctx.cancelled_job_id = self.resolver.resolve(ctx.job_name, now=self.clock())
        except AlreadyRunningError as e:
            ctx.metrics.current_job_seconds_running = e.seconds_running
            raise

    def _setup_directories(self, ctx: RunContext) -> None:
        ctx.directories = self.publisher.setup_directories(
            ctx.config.directories,
            ctx.config.job_root,
            ctx.config.asset_object
        )

    def _setup_asset_object(self, ctx: RunContext) -> None:
        self.publisher.publish_asset(
            ctx.config.asset_file,
            ctx.config.asset_object,
            copies=ctx.config.asset_copies
        )

    def _get_job_objects(self, ctx: RunContext) -> None:
        objects = list(self.list_input_objects(ctx) or [])
        if not objects:
            logger.info("No objects returned from list_input_objects. Not starting job.")
            raise NoInputObjectsError("No objects provided.")

        if not all(isinstance(o, str) for o in objects):
            raise JobDefinitionError("Input objects must be object paths")

        ctx.objects = objects

    def _get_job_definition(self, ctx: RunContext) -> None:
        ctx.definition = prepare_definition(
            self.provide_job_definition(ctx),
            ctx.job_name,
            ctx.config.asset_object
        )

    def _create_job(self, ctx: RunContext) -> None:
        log_with_fields(
            logger, logging.INFO, "Job definition and objects",
            job=ctx.definition, numberOfObjects=len(ctx.objects)
        )
        logger.debug(f"Objects: {ctx.objects}")

        if ctx.config.dry_run:
            logger.info("Dry run, not creating job")
            return

        ctx.job_id = self.submitter.submit(
            ctx.definition, ctx.objects, ctx.ledger, now=self.clock()
        )
        set_correlation_ids(job_id=ctx.job_id)
        ctx.metrics.started_job = 1
        ctx.metrics.number_of_objects = len(ctx.objects)

    # =========================================================================
    # Finalization
    # =========================================================================

    def _finalize(self, ctx: RunContext, result: StageResult) -> RunResult:
        error = result.error

        if result.action == StageAction.STOP_ERROR:
            logger.error(f"Error. {error}", exc_info=error)
            ctx.metrics.cron_failed = 1
        else:
            if error is not None:
                logger.info(str(error))
            ctx.metrics.cron_failed = 0

        self._record_jobs(ctx)

        end_time = self.clock()
        run_result = RunResult(
            outcome=self._outcome(ctx, result),
            reason=_reason(error) if error is not None else None,
            job_id=ctx.job_id,
            cancelled_job_id=ctx.cancelled_job_id,
            metrics=ctx.metrics,
            start_time=ctx.start_time,
            end_time=end_time,
            error=error,
        )
        self._write_audit_record(ctx, run_result)
        self._notify(run_result)
        return run_result

    def _record_jobs(self, ctx: RunContext) -> None:
        if not ctx.ledger_loaded:
            logger.debug("Ledger was not loaded, leaving stored ledger untouched")
            return

        try:
            self.ledger_store.save(ctx.ledger)
        except ObjectNotFoundError as e:
            logger.info(f"Ledger destination missing, not saved: {e}")
        except Exception as e:
            logger.error(f"Error saving ledger: {e}", exc_info=True)

    def _outcome(self, ctx: RunContext, result: StageResult) -> RunOutcome:
        if result.action == StageAction.STOP_ERROR:
            return RunOutcome.FAILED
        if isinstance(result.error, JobDisabledError):
            return RunOutcome.DISABLED
        if result.action == StageAction.STOP_CLEAN:
            return RunOutcome.SKIPPED
        if ctx.job_id is None:
            return RunOutcome.DRY_RUN
        return RunOutcome.STARTED

    def _write_audit_record(self, ctx: RunContext, run_result: RunResult) -> None:
        metrics = ctx.metrics
        fields: Dict[str, Any] = {
            'audit': True,
            'jobName': ctx.job_name,
            'outcome': run_result.outcome.value,
            'reason': run_result.reason,
            'startedJob': metrics.started_job,
            'cronFailed': metrics.cron_failed,
            'startTime': format_timestamp(run_result.start_time),
            'endTime': format_timestamp(run_result.end_time),
            'cronRunMillis': millis_between(run_result.start_time, run_result.end_time),
        }
        if metrics.number_of_objects is not None:
            fields['numberOfObjects'] = metrics.number_of_objects
        if metrics.current_job_seconds_running is not None:
            fields['currentJobSecondsRunning'] = metrics.current_job_seconds_running
        if ctx.job_id:
            fields['jobId'] = ctx.job_id
        if ctx.config.dry_run:
            fields['dryRun'] = True

        log_with_fields(logger, logging.INFO, "audit", **fields)

    def _notify(self, run_result: RunResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(run_result)
            except Exception as e:
                logger.error(f"Run listener failed: {e}", exc_info=True)
