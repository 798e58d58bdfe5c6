"""
Data models for the job manager.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jobmanager.security_utils import validate_job_name, validate_object_path, validate_local_path


QUEUED_STATE = "queued"
RUNNING_STATE = "running"
DONE_STATE = "done"

# States in which a job no longer counts against the one-job-per-name rule
TERMINAL_STATES = {DONE_STATE}

DEFAULT_RETENTION_DAYS = 7.0


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive values are taken to be UTC.

    Args:
        value: ISO-8601 string or datetime

    Returns:
        Aware datetime in UTC

    Raises:
        ValueError: If the string is not a valid timestamp
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    dt = parse_timestamp(dt)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f".{dt.microsecond // 1000:03d}Z"


def millis_between(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end."""
    return int(round((end - start).total_seconds() * 1000))


class JobRecord(BaseModel):
    """Ledger entry for a submitted job."""
    model_config = ConfigDict(populate_by_name=True)

    time_created: datetime = Field(alias="timeCreated")
    audited: bool = False

    @field_validator('time_created', mode='before')
    @classmethod
    def validate_time_created(cls, v: Any) -> datetime:
        """Normalize to aware UTC."""
        if isinstance(v, (str, datetime)):
            return parse_timestamp(v)
        raise ValueError(f"timeCreated must be an ISO-8601 string, got {v!r}")

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed since the job was created."""
        return (now - self.time_created).total_seconds()

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the persisted ledger."""
        return {
            "timeCreated": format_timestamp(self.time_created),
            "audited": self.audited,
        }


class JobStats(BaseModel):
    """Execution statistics reported by the job service."""
    model_config = ConfigDict(extra="allow")

    errors: int = 0

    @field_validator('errors', mode='before')
    @classmethod
    def validate_errors(cls, v: Any) -> int:
        """Missing error counts are zero."""
        return 0 if v is None else v


class RemoteJob(BaseModel):
    """Job status as reported by the job service. Never cached across runs."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: Optional[str] = None
    state: str
    input_done: bool = Field(default=False, alias="inputDone")
    time_created: Optional[datetime] = Field(default=None, alias="timeCreated")
    time_done: Optional[datetime] = Field(default=None, alias="timeDone")
    stats: JobStats = Field(default_factory=JobStats)

    @field_validator('time_created', 'time_done', mode='before')
    @classmethod
    def validate_times(cls, v: Any) -> Optional[datetime]:
        """Normalize to aware UTC."""
        if v is None or v == "":
            return None
        return parse_timestamp(v)

    @field_validator('stats', mode='before')
    @classmethod
    def validate_stats(cls, v: Any) -> Any:
        """Jobs without stats report no errors."""
        return {} if v is None else v

    @property
    def is_terminal(self) -> bool:
        """True if the job is finished."""
        return self.state in TERMINAL_STATES

    @property
    def is_pending(self) -> bool:
        """True if the job has not completed yet."""
        return self.state in (QUEUED_STATE, RUNNING_STATE)


class AuditEntry(BaseModel):
    """
    Audit result for one completed job.

    Produced once per job, optionally enriched by a caller hook through
    ``extra``, logged, then discarded.
    """
    job_id: str
    job_errors: int = 0
    time_created: Optional[datetime] = None
    job_duration_millis: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_log_fields(self) -> Dict[str, Any]:
        """Structured fields for the audit log record."""
        fields: Dict[str, Any] = {
            "audit": True,
            "id": self.job_id,
            "jobErrors": self.job_errors,
            "timeCreated": (
                format_timestamp(self.time_created) if self.time_created else None
            ),
            "jobDurationMillis": self.job_duration_millis,
        }
        fields.update(self.extra)
        return fields


class JobManagerConfig(BaseModel):
    """Job manager configuration."""

    class MinioConfig(BaseModel):
        endpoint: str = "localhost:9000"
        access_key: str = "minioadmin"
        secret_key: str = "minioadmin"
        secure: bool = False

    class LoggingConfig(BaseModel):
        level: str = Field(
            default="INFO",
            description="Global log level: DEBUG, INFO, WARNING, ERROR"
        )
        file: Optional[str] = Field(
            default=None,
            description="Optional log file path (in addition to stdout)"
        )
        json_format: bool = Field(
            default=False,
            description="Output logs in JSON format for machine parsing"
        )
        module_levels: Dict[str, str] = Field(
            default_factory=dict,
            description="Per-module log levels, e.g. {'auditor': 'DEBUG', 'object_store': 'WARNING'}"
        )

    job_name: str = Field(description="Name of the job, used to detect already-running jobs")
    job_root: str = Field(description="Object directory holding the jobs ledger")
    asset_file: Optional[str] = Field(default=None, description="Local file uploaded as the job asset")
    asset_object: Optional[str] = Field(default=None, description="Object path of the job asset")
    asset_copies: int = Field(default=2, ge=1, description="Replication factor for the asset upload")
    directories: List[str] = Field(default_factory=list, description="Object directories to create before the run")
    job_enabled: bool = True
    disable_all_jobs: bool = False
    force_run: bool = Field(default=False, description="Run even if disabled")
    dry_run: bool = Field(default=False, description="Log the job instead of creating it")
    retention_days: float = Field(
        default=DEFAULT_RETENTION_DAYS,
        gt=0,
        description="Age after which audited ledger entries are dropped"
    )
    previous_jobs_object: Optional[str] = Field(
        default=None,
        description="Ledger object path (default: <job_root>/jobs.json)"
    )
    plugin: Optional[str] = Field(
        default=None,
        description="Module providing the job service and job callbacks"
    )
    minio: MinioConfig = Field(default_factory=MinioConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('job_name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate job name format."""
        return validate_job_name(v)

    @field_validator('job_root', 'asset_object', 'previous_jobs_object')
    @classmethod
    def validate_object_paths(cls, v: Optional[str]) -> Optional[str]:
        """Validate object store paths."""
        if v is None:
            return v
        return validate_object_path(v)

    @field_validator('directories')
    @classmethod
    def validate_directories(cls, v: List[str]) -> List[str]:
        """Validate object store directories."""
        return [validate_object_path(d, "directory") for d in v]

    @field_validator('asset_file')
    @classmethod
    def validate_asset_file(cls, v: Optional[str]) -> Optional[str]:
        """Validate local asset path."""
        if v is None:
            return v
        return str(validate_local_path(v, "asset file"))

    @model_validator(mode='after')
    def validate_asset_pair(self) -> 'JobManagerConfig':
        """An asset file needs somewhere to go."""
        if self.asset_file and not self.asset_object:
            raise ValueError("asset_object is required when asset_file is set")
        return self

    @property
    def ledger_object(self) -> str:
        """Object path of the jobs ledger."""
        return self.previous_jobs_object or f"{self.job_root}/jobs.json"

    @property
    def retention_seconds(self) -> float:
        """Retention window in seconds."""
        return self.retention_days * 24 * 3600


class JobManagerConfigFile(BaseModel):
    """Root structure of the job manager config file."""
    jobmanager: JobManagerConfig
