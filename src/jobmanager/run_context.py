"""
Per-invocation state of a job run.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from jobmanager.ledger import Ledger
from jobmanager.models import JobManagerConfig, utcnow


@dataclass
class RunMetrics:
    """Figures reported in the invocation audit record."""
    started_job: int = 0
    cron_failed: int = 1
    number_of_objects: Optional[int] = None
    current_job_seconds_running: Optional[int] = None


@dataclass
class RunContext:
    """
    State of one run, passed through every stage.

    Created by the coordinator and discarded after the invocation record
    has been logged. Callbacks receive it read-only.
    """
    config: JobManagerConfig
    start_time: datetime = field(default_factory=utcnow)
    ledger: Ledger = field(default_factory=dict)
    # The ledger is written back only if it was read successfully
    ledger_loaded: bool = False
    directories: List[str] = field(default_factory=list)
    objects: List[str] = field(default_factory=list)
    definition: Optional[Dict[str, Any]] = None
    job_id: Optional[str] = None
    cancelled_job_id: Optional[str] = None
    metrics: RunMetrics = field(default_factory=RunMetrics)

    @property
    def job_name(self) -> str:
        return self.config.job_name
