"""
Pytest fixtures for job manager tests.

Provides in-memory fakes of the object store and job service, and spawns a
local MinIO server on a random port for integration tests.
"""
import os
import sys
import time
import socket
import shutil
import tempfile
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from contextlib import closing
from typing import Dict, List, Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobmanager.errors import JobServiceError, ObjectNotFoundError
from jobmanager.job_service import JobService, JobSummary
from jobmanager.models import JobManagerConfig, RemoteJob
from jobmanager.object_store import ObjectStore


NOW = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeObjectStore(ObjectStore):
    """In-memory object store recording every call."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.copies: Dict[str, Optional[int]] = {}
        self.directories: List[str] = []
        self.calls: List[tuple] = []
        self.get_error: Optional[Exception] = None
        self.put_error: Optional[Exception] = None
        self.mkdir_errors: Dict[str, Exception] = {}

    def get_object(self, path):
        self.calls.append(('get', path))
        if self.get_error is not None:
            raise self.get_error
        if path not in self.objects:
            raise ObjectNotFoundError(f"{path} not found")
        return self.objects[path]

    def put_object(self, path, stream, size, copies=None):
        self.calls.append(('put', path))
        if self.put_error is not None:
            raise self.put_error
        data = stream.read()
        assert len(data) == size
        self.objects[path] = data
        self.copies[path] = copies

    def ensure_directory(self, path):
        self.calls.append(('mkdir', path))
        if path in self.mkdir_errors:
            raise self.mkdir_errors[path]
        self.directories.append(path)


class FakeJobService(JobService):
    """In-memory job service recording every call."""

    def __init__(self):
        self.jobs: Dict[str, dict] = {}
        self.created: List[dict] = []
        self.inputs: Dict[str, List[str]] = {}
        self.cancelled: List[str] = []
        self.fetched: List[str] = []
        self.get_errors: Dict[str, Exception] = {}
        self.create_error: Optional[Exception] = None
        self.add_error: Optional[Exception] = None
        self._next_id = 1

    def add_job(self, job_id, name="gc", state="done", input_done=True,
                time_created="2024-01-01T00:00:00Z", time_done=None, errors=0):
        self.jobs[job_id] = {
            'id': job_id,
            'name': name,
            'state': state,
            'inputDone': input_done,
            'timeCreated': time_created,
            'timeDone': time_done,
            'stats': {'errors': errors},
        }

    def create_job(self, definition):
        if self.create_error is not None:
            raise self.create_error
        job_id = f"job-new-{self._next_id}"
        self._next_id += 1
        self.created.append(definition)
        self.add_job(job_id, name=definition['name'], state='queued',
                     input_done=False, time_created=NOW.isoformat())
        return job_id

    def add_input_objects(self, job_id, objects, end=True):
        if self.add_error is not None:
            raise self.add_error
        self.inputs[job_id] = list(objects)
        self.jobs[job_id]['inputDone'] = end

    def list_jobs(self, name):
        return [
            JobSummary(id=job['id'], name=job['name'])
            for job in self.jobs.values() if job['name'] == name
        ]

    def get_job(self, job_id):
        self.fetched.append(job_id)
        if job_id in self.get_errors:
            raise self.get_errors[job_id]
        if job_id not in self.jobs:
            raise JobServiceError(f"No such job: {job_id}")
        return RemoteJob.model_validate(self.jobs[job_id])

    def cancel_job(self, job_id):
        self.cancelled.append(job_id)
        self.jobs[job_id]['state'] = 'done'


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def job_service() -> FakeJobService:
    return FakeJobService()


@pytest.fixture
def config() -> JobManagerConfig:
    """Minimal job configuration."""
    return JobManagerConfig(
        job_name="gc",
        job_root="/poseidon/stor/gc",
    )


def find_free_port() -> int:
    """Find a free TCP port."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('127.0.0.1', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def wait_for_port(port: int, timeout: float = 10.0) -> bool:
    """Wait for a port to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
                s.connect(('127.0.0.1', port))
                return True
        except ConnectionRefusedError:
            time.sleep(0.1)
    return False


@pytest.fixture(scope="session")
def minio_server():
    """
    Start a MinIO server for testing.

    Yields:
        dict with 'endpoint', 'access_key', 'secret_key' keys
    """
    minio_bin = Path(__file__).parent.parent / "bin" / "minio"
    if not minio_bin.exists():
        pytest.skip("MinIO binary not found. Run: curl -sSL https://dl.min.io/server/minio/release/linux-amd64/minio -o bin/minio && chmod +x bin/minio")

    port = find_free_port()
    console_port = find_free_port()

    data_dir = tempfile.mkdtemp(prefix="minio_test_")

    access_key = "testadmin"
    secret_key = "testadmin123"

    env = os.environ.copy()
    env['MINIO_ROOT_USER'] = access_key
    env['MINIO_ROOT_PASSWORD'] = secret_key

    proc = subprocess.Popen(
        [
            str(minio_bin), 'server', data_dir,
            '--address', f'127.0.0.1:{port}',
            '--console-address', f'127.0.0.1:{console_port}',
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )

    if not wait_for_port(port, timeout=10.0):
        proc.kill()
        shutil.rmtree(data_dir, ignore_errors=True)
        pytest.skip("Could not start MinIO server")

    yield {
        'endpoint': f'127.0.0.1:{port}',
        'access_key': access_key,
        'secret_key': secret_key,
        'secure': False,
    }

    proc.terminate()
    try:
        proc.wait(timeout=2)
    except subprocess.TimeoutExpired:
        proc.kill()
    shutil.rmtree(data_dir, ignore_errors=True)


@pytest.fixture
def temp_work_dir():
    """Create a temporary work directory for tests."""
    work_dir = tempfile.mkdtemp(prefix="jobmanager_test_")
    yield work_dir
    shutil.rmtree(work_dir, ignore_errors=True)
