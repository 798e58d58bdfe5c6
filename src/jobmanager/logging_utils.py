"""
Logging utilities for the job manager.

Provides:
- Structured logging with key=value fields
- Correlation ID context management (job name, remote job id)
- Performance timing utilities
- Optional JSON output
"""
import json
import logging
import os
import time
from contextvars import ContextVar
from datetime import date, datetime
from typing import Dict, Any, Optional
from contextlib import contextmanager


# Context variables for correlation IDs (thread-safe)
_job_name: ContextVar[Optional[str]] = ContextVar('job_name', default=None)
_job_id: ContextVar[Optional[str]] = ContextVar('job_id', default=None)


def _json_default(value: Any) -> Any:
    """Serialize values json.dumps doesn't know about."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """
    Formatter that adds correlation IDs and structured fields.

    Format: [timestamp] [level] [component] correlation_ids key=value message
    """

    converter = time.gmtime

    def __init__(self, json_output: bool = False):
        """
        Initialize formatter.

        Args:
            json_output: If True, output JSON lines instead of human-readable
        """
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with correlation IDs and structured fields."""

        if self.json_output:
            return self._format_json(record)
        else:
            return self._format_human(record)

    def _timestamp(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S')
        return f"{timestamp}.{int(record.msecs):03d}Z"

    def _format_human(self, record: logging.LogRecord) -> str:
        """Human-readable format with key=value pairs."""
        component = record.name.split('.')[-1]

        corr_parts = []

        job_name = _job_name.get()
        if job_name:
            corr_parts.append(f"job={job_name}")

        job_id = _job_id.get()
        if job_id:
            corr_parts.append(f"job_id={job_id}")

        extra_fields = []
        if hasattr(record, 'fields') and isinstance(record.fields, dict):
            for key, value in record.fields.items():
                if value is None:
                    continue
                if isinstance(value, datetime):
                    extra_fields.append(f"{key}={value.isoformat()}")
                elif isinstance(value, (dict, list)):
                    extra_fields.append(
                        f"{key}={json.dumps(value, default=_json_default, separators=(',', ':'))}"
                    )
                else:
                    extra_fields.append(f"{key}={value}")

        parts = [
            f"[{self._timestamp(record)}]",
            f"[{record.levelname}]",
            f"[{component}]"
        ]

        if corr_parts:
            parts.append(" ".join(corr_parts))

        if extra_fields:
            parts.append(" ".join(extra_fields))

        parts.append(record.getMessage())

        result = " ".join(parts)
        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result

    def _format_json(self, record: logging.LogRecord) -> str:
        """JSON format for machine parsing."""
        log_entry = {
            "timestamp": self._timestamp(record),
            "level": record.levelname,
            "component": record.name.split('.')[-1],
            "message": record.getMessage()
        }

        job_name = _job_name.get()
        if job_name:
            log_entry["job_name"] = job_name

        job_id = _job_id.get()
        if job_id:
            log_entry["job_id"] = job_id

        if hasattr(record, 'fields') and isinstance(record.fields, dict):
            log_entry.update(record.fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=_json_default, separators=(',', ':'))


def set_correlation_ids(
    job_name: Optional[str] = None,
    job_id: Optional[str] = None
) -> None:
    """
    Set correlation IDs for current context.

    These IDs will be automatically included in all log messages
    until cleared or updated.

    Args:
        job_name: Configured job name
        job_id: Remote job ID
    """
    if job_name is not None:
        _job_name.set(job_name)
    if job_id is not None:
        _job_id.set(job_id)


def clear_correlation_ids() -> None:
    """Clear all correlation IDs from current context."""
    _job_name.set(None)
    _job_id.set(None)


def get_correlation_ids() -> Dict[str, Optional[str]]:
    """
    Get current correlation IDs.

    Returns:
        Dict with job_name, job_id
    """
    return {
        'job_name': _job_name.get(),
        'job_id': _job_id.get()
    }


@contextmanager
def correlation_context(
    job_name: Optional[str] = None,
    job_id: Optional[str] = None
):
    """
    Context manager for temporary correlation IDs.

    IDs are restored to previous values when context exits.

    Example:
        with correlation_context(job_name="gc", job_id="3f2a..."):
            logger.info("Auditing job")  # IDs automatically included
    """
    old_name = _job_name.get()
    old_id = _job_id.get()

    try:
        set_correlation_ids(job_name, job_id)
        yield
    finally:
        _job_name.set(old_name)
        _job_id.set(old_id)


@contextmanager
def log_duration(operation: str, logger: Optional[logging.Logger] = None, **extra_fields):
    """
    Context manager that logs duration of an operation.

    Args:
        operation: Name of operation being timed
        logger: Logger to use (default: root logger)
        **extra_fields: Additional fields to include in log

    Example:
        with log_duration("reconcile_ledger", entries=4):
            reconcile()
        # Logs: operation=reconcile_ledger duration_ms=1234 entries=4
    """
    if logger is None:
        logger = logging.getLogger()

    start_time = time.time()

    try:
        yield
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        fields = {
            'operation': operation,
            'duration_ms': duration_ms,
            **extra_fields
        }
        logger.debug(
            f"Operation completed: {operation}",
            extra={'fields': fields}
        )


def log_with_fields(logger: logging.Logger, level: int, message: str, **fields):
    """
    Log a message with structured fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.ERROR, etc.)
        message: Log message
        **fields: Structured fields as keyword arguments

    Example:
        log_with_fields(logger, logging.INFO, "audit",
                       startedJob=1, numberOfObjects=12)
    """
    logger.log(level, message, extra={'fields': fields})


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Setup logging configuration for the job manager.

    Args:
        level: Global log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Enable JSON output instead of human-readable
        log_file: Optional log file path (in addition to stdout)
        module_levels: Per-module log levels, e.g. {'auditor': 'DEBUG'}

    Environment Variables:
        JOBMANAGER_LOG_LEVEL: Override log level
        JOBMANAGER_LOG_JSON: Enable JSON output (1 or 0)
    """
    level = os.getenv('JOBMANAGER_LOG_LEVEL', level).upper()
    json_output = os.getenv('JOBMANAGER_LOG_JSON', '0') == '1' or json_output

    if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        logging.warning(f"Invalid log level '{level}', using INFO")
        level = 'INFO'

    formatter = StructuredFormatter(json_output=json_output)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = os.path.dirname(log_file)
            if log_path and not os.path.exists(log_path):
                os.makedirs(log_path, mode=0o755)

            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except OSError as e:
            logging.error(f"Failed to setup file logging: {e}")

    if module_levels:
        for module_name, module_level in module_levels.items():
            module_level_upper = module_level.upper()
            if module_level_upper in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
                module_logger = logging.getLogger(f'jobmanager.{module_name}')
                module_logger.setLevel(getattr(logging, module_level_upper))
                logging.debug(f"Set log level for {module_name}: {module_level_upper}")
            else:
                logging.warning(f"Invalid log level for module {module_name}: {module_level}")

    logging.debug(f"Logging initialized: level={level}, json={json_output}, file={log_file}")
