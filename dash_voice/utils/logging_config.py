"""
Component logging for the voice session.

Lifecycle events are printed to the console; this logger carries the
debug trail (partials, queue activity, cache hits) tagged with the
component and, once a session is open, its id.
"""

import logging
import sys
from typing import Optional
from pathlib import Path
from datetime import datetime


ROOT_LOGGER_NAME = 'dash_voice'


class SessionFormatter(logging.Formatter):
    """Formats records as [time] [LEVEL] [component:session] message."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        component = getattr(record, 'component', 'session')
        session_id = getattr(record, 'session_id', None)
        tag = f"{component}:{session_id[:8]}" if session_id else component

        line = f"[{timestamp}] [{record.levelname:8}] [{tag:18}] {record.getMessage()}"
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


class ComponentLogger:
    """
    Logger wrapper that tags every record with a component name and,
    once bound, a session id.
    """

    def __init__(self, logger: logging.Logger, component: str, session_id: Optional[str] = None):
        self.logger = logger
        self.component = component
        self.session_id = session_id

    def bind(self, session_id: Optional[str]) -> 'ComponentLogger':
        """Return a logger for the same component tagged with a session id."""
        return ComponentLogger(self.logger, self.component, session_id)

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.get('extra', {})
        extra['component'] = self.component
        extra['session_id'] = self.session_id
        kwargs['extra'] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs['exc_info'] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Route the package logger to stdout and, optionally, a file.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to write logs to

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(SessionFormatter())
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(SessionFormatter())
        logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> ComponentLogger:
    """Get a logger tagged with a component name (e.g. "finalizer")."""
    return ComponentLogger(logging.getLogger(ROOT_LOGGER_NAME), component)
