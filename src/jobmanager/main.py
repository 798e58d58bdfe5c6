#!/usr/bin/env python3
"""
Cron JobManager - Main entry point.

Meant to be invoked from cron (or another scheduler) with exactly one
trigger active per job.
"""
import json
import sys
import logging
from typing import Optional

import click
import yaml

from jobmanager.errors import JobManagerError
from jobmanager.ledger import LedgerStore
from jobmanager.logging_utils import setup_logging
from jobmanager.models import JobManagerConfig, JobManagerConfigFile, format_timestamp, utcnow
from jobmanager.object_store import MinioObjectStore, ObjectStore
from jobmanager.plugins import JobPlugin, PluginError, load_plugin
from jobmanager.run_coordinator import JobCoordinator

# Setup logging will be called in cli()
logger = logging.getLogger(__name__)


def load_config(config_path: str) -> JobManagerConfig:
    """
    Load job manager configuration.

    Args:
        config_path: Path to config YAML

    Returns:
        Validated configuration

    Raises:
        pydantic.ValidationError: If the configuration is invalid
    """
    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    config_file = JobManagerConfigFile(**(data or {}))
    logger.info("Configuration loaded successfully")
    return config_file.jobmanager


def build_coordinator(
    config: JobManagerConfig,
    plugin: JobPlugin,
    store: Optional[ObjectStore] = None
) -> JobCoordinator:
    """
    Wire a coordinator from configuration and a plugin.

    Args:
        config: Job manager configuration
        plugin: Loaded job plugin
        store: Object store (default: Minio from config)
    """
    if store is None:
        store = MinioObjectStore(config.minio)

    return JobCoordinator(
        config=config,
        store=store,
        job_service=plugin.create_job_service(config),
        list_input_objects=plugin.list_input_objects,
        provide_job_definition=plugin.provide_job_definition,
        enrich_audit=plugin.enrich_audit,
    )


def _resolve_plugin(config: JobManagerConfig, plugin_name: Optional[str]) -> JobPlugin:
    name = plugin_name or config.plugin
    if not name:
        raise PluginError("No plugin configured (set 'plugin' in config or pass --plugin)")
    return load_plugin(name)


@click.group()
@click.option(
    '--config', '-c',
    default='/etc/jobmanager/config.yaml',
    type=click.Path(exists=True),
    help='Path to job manager configuration file'
)
@click.option(
    '--log-level', '-l',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    help='Override log level from config'
)
@click.pass_context
def cli(ctx, config, log_level):
    """Cron JobManager - launch and audit long-running compute jobs."""
    level = "INFO"
    json_format = False
    log_file = None
    module_levels = {}

    try:
        with open(config, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        logging_config = config_data.get('jobmanager', {}).get('logging', {})
        level = logging_config.get('level', 'INFO')
        json_format = logging_config.get('json_format', False)
        log_file = logging_config.get('file')
        module_levels = logging_config.get('module_levels', {})
    except (OSError, yaml.YAMLError, AttributeError):
        # Invalid config is reported by the command that needs it
        pass

    if log_level:
        level = log_level

    setup_logging(
        level=level,
        json_output=json_format,
        log_file=log_file,
        module_levels=module_levels
    )

    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config


@cli.command()
@click.option('--plugin', '-p', help='Plugin module (overrides config)')
@click.option('--force', is_flag=True, help='Run even if the job is disabled')
@click.option('--dry-run', is_flag=True, help='Log the job instead of creating it')
@click.pass_context
def run(ctx, plugin, force, dry_run):
    """Run the job once: audit previous runs, then submit a new job."""
    config_path = ctx.obj['config_path']

    try:
        config = load_config(config_path)
        if force or dry_run:
            config = config.model_copy(update={
                'force_run': force or config.force_run,
                'dry_run': dry_run or config.dry_run,
            })
        coordinator = build_coordinator(config, _resolve_plugin(config, plugin))
        result = coordinator.run()

    except JobManagerError as e:
        logger.error(f"Run failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Run failed: {e}", exc_info=True)
        sys.exit(1)

    click.echo(f"{result.outcome.value}" + (f" ({result.reason})" if result.reason else ""))


@cli.group()
def ledger():
    """Inspect and maintain the jobs ledger."""
    pass


@ledger.command('show')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def ledger_show(ctx, output_json):
    """Show the jobs ledger."""
    config_path = ctx.obj['config_path']

    try:
        config = load_config(config_path)
        store = MinioObjectStore(config.minio)
        entries = LedgerStore(store, config.ledger_object).load()

    except Exception as e:
        logger.error(f"Failed to read ledger: {e}", exc_info=True)
        sys.exit(1)

    if output_json:
        document = {job_id: record.to_document() for job_id, record in entries.items()}
        click.echo(json.dumps(document, indent=2, sort_keys=True))
        return

    now = utcnow()
    click.echo("=" * 60)
    click.echo(f"Ledger: {config.ledger_object}")
    click.echo("=" * 60)
    if not entries:
        click.echo("(empty)")
    for job_id, record in sorted(entries.items(), key=lambda item: item[1].time_created):
        age_days = record.age_seconds(now) / 86400
        status = "audited" if record.audited else "pending"
        click.echo(
            f"  {job_id}  {format_timestamp(record.time_created)}  "
            f"{status:<8} {age_days:.1f}d"
        )


@ledger.command('audit')
@click.option('--plugin', '-p', help='Plugin module (overrides config)')
@click.pass_context
def ledger_audit(ctx, plugin):
    """Audit completed jobs and prune the ledger without submitting."""
    config_path = ctx.obj['config_path']

    try:
        config = load_config(config_path)
        coordinator = build_coordinator(config, _resolve_plugin(config, plugin))
        run_ctx = coordinator.reconcile_only()

    except Exception as e:
        logger.error(f"Audit failed: {e}", exc_info=True)
        sys.exit(1)

    pending = sum(1 for record in run_ctx.ledger.values() if not record.audited)
    click.echo(f"{len(run_ctx.ledger)} entries, {pending} not yet audited")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
