"""
Loading of job plugins.

A job plugin is an importable module that supplies everything specific to
one job:

    def create_job_service(config) -> JobService
    def list_input_objects(context) -> List[str]
    def provide_job_definition(context) -> dict
    def enrich_audit(job, audit_entry, context) -> None   # optional
"""
import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from jobmanager.errors import JobManagerError
from jobmanager.job_service import JobService
from jobmanager.models import JobManagerConfig

logger = logging.getLogger(__name__)

REQUIRED_HOOKS = ('create_job_service', 'list_input_objects', 'provide_job_definition')


class PluginError(JobManagerError):
    """Plugin module missing or incomplete."""
    reason = "PluginError"


@dataclass
class JobPlugin:
    """Callbacks supplied by a plugin module."""
    name: str
    create_job_service: Callable[[JobManagerConfig], JobService]
    list_input_objects: Callable[[Any], List[str]]
    provide_job_definition: Callable[[Any], Dict[str, Any]]
    enrich_audit: Optional[Callable[[Any, Any, Any], None]] = None


def load_plugin(module_name: str) -> JobPlugin:
    """
    Import a plugin module and collect its callbacks.

    Args:
        module_name: Dotted module name

    Returns:
        JobPlugin with the module's callbacks

    Raises:
        PluginError: If the module can't be imported or lacks a required hook
    """
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise PluginError(f"Cannot import plugin '{module_name}': {e}")

    missing = [
        hook for hook in REQUIRED_HOOKS
        if not callable(getattr(module, hook, None))
    ]
    if missing:
        raise PluginError(
            f"Plugin '{module_name}' is missing: {', '.join(missing)}"
        )

    enrich_audit = getattr(module, 'enrich_audit', None)
    if enrich_audit is not None and not callable(enrich_audit):
        raise PluginError(f"Plugin '{module_name}': enrich_audit is not callable")

    logger.info(f"Loaded plugin: {module_name}")
    return JobPlugin(
        name=module_name,
        create_job_service=module.create_job_service,
        list_input_objects=module.list_input_objects,
        provide_job_definition=module.provide_job_definition,
        enrich_audit=enrich_audit,
    )
