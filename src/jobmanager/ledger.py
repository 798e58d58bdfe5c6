"""
Jobs ledger persistence.

The ledger is one JSON document mapping job ID to its record:

    {"<job id>": {"timeCreated": "2024-01-01T00:00:00.000Z", "audited": false}}

It is read once at the start of a run and replaced wholesale at the end.
There is no concurrency control; runs must not overlap.
"""
import json
import logging
from typing import Dict

from pydantic import ValidationError

from jobmanager.errors import LedgerCorruptionError, ObjectNotFoundError
from jobmanager.models import JobRecord
from jobmanager.object_store import ObjectStore

logger = logging.getLogger(__name__)

Ledger = Dict[str, JobRecord]


def parse_ledger(data: bytes) -> Ledger:
    """
    Parse a ledger document.

    Args:
        data: Raw document bytes

    Returns:
        Mapping of job ID to JobRecord

    Raises:
        LedgerCorruptionError: If the document is not a valid ledger
    """
    try:
        document = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise LedgerCorruptionError(f"Ledger is not valid JSON: {e}")

    if not isinstance(document, dict):
        raise LedgerCorruptionError(
            f"Ledger must be a JSON object, got {type(document).__name__}"
        )

    ledger: Ledger = {}
    for job_id, record in document.items():
        try:
            ledger[job_id] = JobRecord.model_validate(record)
        except ValidationError as e:
            raise LedgerCorruptionError(f"Invalid ledger entry {job_id}: {e}")

    return ledger


def serialize_ledger(ledger: Ledger) -> bytes:
    """Serialize a ledger to its JSON document."""
    document = {job_id: record.to_document() for job_id, record in ledger.items()}
    return json.dumps(document, sort_keys=True).encode('utf-8')


class LedgerStore:
    """Reads and writes the jobs ledger object."""

    def __init__(self, store: ObjectStore, path: str):
        """
        Initialize ledger store.

        Args:
            store: Object store holding the ledger
            path: Object path of the ledger document
        """
        self.store = store
        self.path = path

    def load(self) -> Ledger:
        """
        Fetch and parse the ledger.

        A missing ledger is an empty one.

        Raises:
            LedgerCorruptionError: If the stored document can't be parsed
            TransportError: If the fetch fails
        """
        try:
            data = self.store.get_object(self.path)
        except ObjectNotFoundError:
            logger.info(f"{self.path} doesn't exist yet, continuing")
            return {}

        ledger = parse_ledger(data)
        logger.debug(f"Loaded {len(ledger)} ledger entries from {self.path}")
        return ledger

    def save(self, ledger: Ledger) -> None:
        """
        Replace the stored ledger.

        Raises:
            TransportError: If the write fails
        """
        data = serialize_ledger(ledger)
        self.store.put_bytes(self.path, data)
        logger.info(f"Saved {len(ledger)} ledger entries to {self.path}")
