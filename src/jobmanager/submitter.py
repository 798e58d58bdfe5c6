"""
Job definition checks and job submission.
"""
import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from jobmanager.errors import JobDefinitionError
from jobmanager.job_service import JobService
from jobmanager.ledger import Ledger
from jobmanager.logging_utils import log_with_fields
from jobmanager.models import JobRecord, utcnow

logger = logging.getLogger(__name__)


def prepare_definition(
    definition: Any,
    job_name: str,
    asset_object: Optional[str] = None
) -> Dict[str, Any]:
    """
    Validate a job definition and fill in what the job manager owns.

    The definition is otherwise opaque. It must be a mapping with a list of
    phases; the name is set to ``job_name`` if absent and must match it if
    present; ``asset_object`` is added to every phase's assets once.

    Args:
        definition: Definition returned by the definition provider
        job_name: Configured job name
        asset_object: Asset object path (optional)

    Returns:
        A new, augmented definition (the input is not modified)

    Raises:
        JobDefinitionError: If the definition is malformed or names another job
    """
    if not isinstance(definition, dict):
        raise JobDefinitionError(
            f"Job definition must be a mapping, got {type(definition).__name__}"
        )

    job = copy.deepcopy(definition)

    phases = job.get('phases')
    if not isinstance(phases, list) or not all(isinstance(p, dict) for p in phases):
        raise JobDefinitionError("Job definition must have a list of phases")

    name = job.get('name')
    if name and name != job_name:
        raise JobDefinitionError(
            f"Given job name '{name}' doesn't match configured name '{job_name}'"
        )
    if not name:
        job['name'] = job_name

    if asset_object:
        for i, phase in enumerate(phases):
            assets = phase.get('assets')
            if assets is None:
                assets = []
            elif not isinstance(assets, list):
                raise JobDefinitionError(f"Phase {i} assets must be a list")
            if asset_object not in assets:
                assets.append(asset_object)
            phase['assets'] = assets

    return job


class JobSubmitter:
    """Creates a job, records it in the ledger and hands it its input objects."""

    def __init__(self, job_service: JobService):
        self.job_service = job_service

    def submit(
        self,
        definition: Dict[str, Any],
        objects: List[str],
        ledger: Ledger,
        now: Optional[datetime] = None
    ) -> str:
        """
        Create the job, add all objects and seal its input.

        The ledger entry is added as soon as the job exists, so a job whose
        input could not be added is still audited later.

        Args:
            definition: Prepared job definition
            objects: Full object paths to process
            ledger: Working ledger to record the new job in
            now: Creation time for the ledger entry (default: utcnow())

        Returns:
            ID of the created job

        Raises:
            TransportError: If creation or adding objects fails (not retried)
        """
        job_id = self.job_service.create_job(definition)
        ledger[job_id] = JobRecord(time_created=now or utcnow(), audited=False)
        log_with_fields(logger, logging.INFO, "Created job", id=job_id)

        self.job_service.add_input_objects(job_id, objects, end=True)
        log_with_fields(
            logger, logging.INFO, "Added objects to job",
            id=job_id, numberOfObjects=len(objects)
        )

        return job_id
