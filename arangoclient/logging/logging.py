"""
Structured Logging
==================

structlog configuration for applications using the client. Library
modules log through the standard ``logging`` module; once
:meth:`LogManager.setup` has run, those records are rendered as JSON
through the same processor chain as the structlog events, with the
client's ``extra`` fields (host, attempt, retry reason) as keys.
"""

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
import tempfile
import threading

import structlog

# httpx and httpcore log every request at INFO/DEBUG; the client's own
# per-attempt DEBUG lines already cover that.
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")

CLIENT_LOGGER = "arangoclient"

# Record attributes set by the client through ``extra=``; keep in sync with
# the ``extra`` dicts in arangoclient.database.arango.
CLIENT_RECORD_FIELDS = ("host_url", "attempt", "retry_reason", "cursor_id", "transaction_id")


def _get_log_directory() -> Path:
    """
    Get a writable log directory.

    Priority:
    1. ARANGO_LOG_DIR environment variable
    2. LOG_DIR environment variable
    3. Current working directory / logs
    4. System temp directory / arangoclient_logs

    Returns:
        Path to writable log directory
    """
    for env_var in ("ARANGO_LOG_DIR", "LOG_DIR"):
        if env_log_dir := os.environ.get(env_var):
            log_dir = Path(env_log_dir)
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                if os.access(log_dir, os.W_OK):
                    return log_dir
            except OSError:
                pass

    try:
        log_dir = Path.cwd() / "logs"
        log_dir.mkdir(exist_ok=True)
        if os.access(log_dir, os.W_OK):
            return log_dir
    except OSError:
        pass

    log_dir = Path(tempfile.gettempdir()) / "arangoclient_logs"
    log_dir.mkdir(exist_ok=True)
    return log_dir


def _validate_log_level(log_level: str) -> int:
    """
    Validate and convert log level string to numeric value.

    Raises:
        ValueError: If log_level is not a valid logging level name
    """
    level_name = str(log_level).upper()

    valid_levels = {"DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL", "FATAL"}
    if level_name not in valid_levels:
        raise ValueError(
            f"Invalid log level: '{log_level}'. "
            f"Must be one of: {', '.join(sorted(valid_levels))}"
        )

    return getattr(logging, level_name)

# Global flag and lock for thread-safe initialization
_logging_initialized = False
_init_lock = threading.Lock()


def _shared_processors() -> list:
    """Processors applied both to structlog events and to stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(allow=CLIENT_RECORD_FIELDS),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]


def _json_formatter() -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
    )


class LogManager:
    """
    Logging configuration for arangoclient applications.

    Features:
    - Structured JSON logging via structlog
    - Client records (retries, failovers, cursor kills) rendered as JSON,
      with their host and attempt fields as keys
    - Rotating client log and error log files
    - Per-client context (component, client_id, database)
    - Quiet transport loggers (httpx, httpcore)
    """

    @staticmethod
    def setup(
        log_level: str = "INFO",
        transport_log_level: str = "WARNING",
        client_log_level: str | None = None,
    ):
        """
        Setup logging configuration. Only the first call has an effect.

        Args:
            log_level: Level for the application and the log files
            transport_log_level: Level for httpx/httpcore loggers
            client_log_level: Level for the ``arangoclient`` loggers
                (defaults to ``log_level``)
        """
        global _logging_initialized

        if _logging_initialized:
            return

        with _init_lock:
            if _logging_initialized:
                return

            numeric_level = _validate_log_level(log_level)
            transport_level = _validate_log_level(transport_log_level)
            client_level = _validate_log_level(client_log_level or log_level)
            log_dir = _get_log_directory()

            logging.basicConfig(
                level=numeric_level,
                format='%(message)s'
            )

            formatter = _json_formatter()
            handlers = []

            # Client log file with rotation (10MB, keep 5 backups)
            main_handler = RotatingFileHandler(
                log_dir / "arangoclient.log",
                maxBytes=10_485_760,
                backupCount=5
            )
            main_handler.setLevel(numeric_level)
            handlers.append(main_handler)

            # Error log file (10MB, keep 3 backups)
            error_handler = RotatingFileHandler(
                log_dir / "errors.log",
                maxBytes=10_485_760,
                backupCount=3
            )
            error_handler.setLevel(logging.ERROR)
            handlers.append(error_handler)

            root_logger = logging.getLogger()
            for handler in handlers:
                handler.setFormatter(formatter)
                root_logger.addHandler(handler)

            logging.getLogger(CLIENT_LOGGER).setLevel(client_level)
            for name in _NOISY_LOGGERS:
                logging.getLogger(name).setLevel(transport_level)

            structlog.configure(
                processors=[
                    structlog.stdlib.filter_by_level,
                    *_shared_processors(),
                    structlog.stdlib.PositionalArgumentsFormatter(),
                    structlog.processors.format_exc_info,
                    structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
                ],
                context_class=dict,
                logger_factory=structlog.stdlib.LoggerFactory(),
                wrapper_class=structlog.stdlib.BoundLogger,
                cache_logger_on_first_use=True,
            )

            _logging_initialized = True

            logger = structlog.get_logger()
            logger.info("logging_initialized", log_dir=str(log_dir), level=log_level)

    @staticmethod
    def get_logger(component: str, client_id: str | None = None, **context):
        """
        Get a structlog logger bound to a client component.

        Args:
            component: Component name, e.g. "connection" or "cursor"
            client_id: Identifier of the client instance, if any
            **context: Extra key/value pairs bound to every event

        Returns:
            Bound structlog logger
        """
        if not _logging_initialized:
            LogManager.setup()

        if client_id is not None:
            context["client_id"] = client_id
        return structlog.get_logger().bind(component=component, **context)

    @staticmethod
    @contextmanager
    def client_context(**context) -> Iterator[None]:
        """
        Attach key/value pairs to every record logged inside the block.

        Covers the client's own records as well, e.g.
        ``with LogManager.client_context(database="app"): ...``. Tasks
        created inside the block inherit the context.
        """
        with structlog.contextvars.bound_contextvars(**context):
            yield
