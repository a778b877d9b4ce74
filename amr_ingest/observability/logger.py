"""
Structured logging for amr-ingest.

Every module logger lives under the "amr_ingest" hierarchy and propagates to
one configured parent, so handlers are attached once per process. JSON
output (python-json-logger) is the default; LOG_FORMAT=text gives a plain
format for local runs.
"""
import logging
import os
import sys
import threading
import time

from pythonjsonlogger import jsonlogger

ROOT_LOGGER = "amr_ingest"

# Context keys passed through `extra=` that the JSON formatter always emits
CONTEXT_FIELDS = ("batch_id", "row_number", "stage")

JSON_FORMAT = "%(timestamp)s %(level)s %(logger)s %(message)s"

_configure_lock = threading.Lock()


class ImportJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for import logs.

    Normalizes the level name and stamps the worker thread, since rows of
    one batch are interpreted on a thread pool.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        # the fmt field creates the key with a None value first
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["thread"] = record.threadName
        for key in CONTEXT_FIELDS:
            if key in log_record and log_record[key] is None:
                del log_record[key]


def setup_logger(level: str | None = None, format_type: str | None = None) -> logging.Logger:
    """
    Configure the "amr_ingest" parent logger, replacing earlier handlers.

    Args:
        level: Log level name (defaults to env var LOG_LEVEL or INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT or json)

    Returns:
        The configured parent logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    format_type = (format_type or os.getenv("LOG_FORMAT", "json")).lower()

    handler = logging.StreamHandler(sys.stderr)
    if format_type == "text":
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
    else:
        handler.setFormatter(ImportJsonFormatter(
            fmt=JSON_FORMAT,
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.propagate = False
    return root


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Logger for a module; the parent is configured on first use.

    Names outside the package hierarchy are nested under it.
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    with _configure_lock:
        if not logging.getLogger(ROOT_LOGGER).handlers:
            setup_logger()
    return logging.getLogger(name)


class log_operation:
    """
    Logs the start, end and duration of one pipeline stage.

    Usage:
        with log_operation("Import batch b1", logger=logger, batch_id="b1"):
            ...

    Exceptions are logged with their traceback and re-raised.
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.started: float | None = None

    def __enter__(self):
        self.started = time.perf_counter()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields},
        )
        return self

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started if self.started is not None else 0.0

    def __exit__(self, exc_type, exc_val, exc_tb):
        fields = {
            "operation": self.operation_name,
            "duration_seconds": round(self.elapsed, 3),
            **self.extra_fields,
        }
        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra=fields)
        else:
            self.logger.error(
                f"Failed: {self.operation_name} ({exc_type.__name__}: {exc_val})",
                extra={**fields, "error_type": exc_type.__name__},
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
