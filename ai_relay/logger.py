#!/usr/bin/env python3
"""
Structured logging for the relay client.

Provides:
- RelayLogger: thin wrapper accepting keyword context on every call
- JSONFormatter: one JSON object per line for machine parsing
- configure_logging(): console + optional append-only JSONL file

USAGE:
  logger = get_logger(__name__)
  logger.debug("HTTP 503, retrying", status_code=503, attempt=1)

Context keywords are forwarded to the stdlib logger as `extra`, so any
handler configured by the host application still receives them.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


# Fields copied from the record into JSON output when present
CONTEXT_FIELDS = (
    'endpoint',
    'method',
    'path',
    'attempt',
    'max_attempts',
    'status_code',
    'delay_seconds',
    'timeout',
    'call_kind',
    'request_id',
    'event_type',
    'conflict_behavior',
    'endpoints',
    'error',
)

_RESERVED_PARAMS = ('exc_info', 'stack_info', 'stacklevel', 'extra')


class FlushingFileHandler(logging.FileHandler):
    """FileHandler that flushes after every emit for real-time log visibility."""
    def emit(self, record):
        super().emit(record)
        self.flush()


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RelayLogger:
    """
    Keyword-context logger.

    Wraps a stdlib logger so call sites can attach structured context
    without building `extra` dicts by hand. Reserved logging parameters
    (exc_info, stack_info, stacklevel, extra) pass through unchanged.
    """

    def __init__(self, name: str, base_logger: Optional[logging.Logger] = None):
        self.name = name
        self._logger = base_logger or logging.getLogger(name)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(self, level: int, message: str, **kwargs):
        if not self._logger.isEnabledFor(level):
            return

        reserved_params = {}
        for param in _RESERVED_PARAMS:
            if param in kwargs:
                reserved_params[param] = kwargs.pop(param)

        extra = dict(kwargs)
        if 'extra' in reserved_params:
            extra.update(reserved_params.pop('extra'))

        self._logger.log(level, message, extra=extra, **reserved_params)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)


def get_logger(name: str) -> RelayLogger:
    return RelayLogger(name)


def as_relay_logger(logger: Union[RelayLogger, logging.Logger, None], default_name: str) -> RelayLogger:
    """Accept either logger flavour from callers; wrap plain stdlib loggers."""
    if logger is None:
        return get_logger(default_name)
    if isinstance(logger, RelayLogger):
        return logger
    return RelayLogger(logger.name, logger)


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: bool = True,
    logger_name: str = "ai_relay",
) -> logging.Logger:
    """
    Attach handlers to the package logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional JSONL file, appended to (directory created lazily)
        console: Whether to log human-readable lines to stderr
        logger_name: Logger to configure (default: package root)

    Returns:
        The configured stdlib logger
    """
    base = logging.getLogger(logger_name)
    base.setLevel(getattr(logging, level.upper()))

    for handler in base.handlers[:]:
        handler.close()
        base.removeHandler(handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter('%(levelname)s %(name)s: %(message)s'))
        base.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        json_handler = FlushingFileHandler(log_file, mode='a')
        json_handler.setFormatter(JSONFormatter())
        base.addHandler(json_handler)

    return base
