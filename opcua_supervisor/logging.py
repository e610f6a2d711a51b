"""
Centralized logging module for the OPC UA supervisory client.

Every component receives a SupervisorLogger instance. It writes through the
standard library logging module and, when a host runtime hands over its own
logging accessor, forwards messages there instead.
"""

from datetime import datetime, timezone
from typing import Callable, Optional
import json
import logging
import sys


ROOT_LOGGER_NAME = "opcua_supervisor"


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""
    log_id = 0

    def format(self, record):
        msg = record.getMessage()
        self.log_id += 1

        log_entry = {
            "id": self.log_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": msg,
        }
        return json.dumps(log_entry)


class SupervisorLogger:
    """
    Logger handed to each client component.

    Integrates with a host runtime logging accessor when one is attached,
    falls back to the standard library logger otherwise.
    """

    def __init__(self, name: str = ROOT_LOGGER_NAME):
        self.name = name
        self._logger = logging.getLogger(name)
        self._log_info_fn: Optional[Callable[[str], None]] = None
        self._log_warn_fn: Optional[Callable[[str], None]] = None
        self._log_error_fn: Optional[Callable[[str], None]] = None
        self._listeners: list[Callable[[str, str], None]] = []
        self._initialized = False

    def initialize(self, logging_accessor) -> bool:
        """
        Attach a host runtime logging accessor.

        Args:
            logging_accessor: Object exposing log_info/log_warn/log_error
                and an is_valid flag

        Returns:
            True if the accessor was attached, False otherwise
        """
        if logging_accessor is None:
            return False

        if not getattr(logging_accessor, 'is_valid', False):
            return False

        self._log_info_fn = getattr(logging_accessor, 'log_info', None)
        self._log_warn_fn = getattr(logging_accessor, 'log_warn', None)
        self._log_error_fn = getattr(logging_accessor, 'log_error', None)
        self._initialized = True
        return True

    def child(self, suffix: str) -> 'SupervisorLogger':
        """Create a logger for a sub-component sharing accessor and listeners."""
        child = SupervisorLogger(f"{self.name}.{suffix}")
        child._log_info_fn = self._log_info_fn
        child._log_warn_fn = self._log_warn_fn
        child._log_error_fn = self._log_error_fn
        child._listeners = self._listeners
        child._initialized = self._initialized
        return child

    def add_listener(self, listener: Callable[[str, str], None]) -> None:
        """Register a callable receiving (level, message) for every record."""
        self._listeners.append(listener)

    def set_level(self, level) -> None:
        """Set the level of the underlying standard library logger."""
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                raise ValueError(f"Unknown log level: {level}")
        self._logger.setLevel(level)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self._logger.debug(message)

    def info(self, message: str) -> None:
        """Log an informational message."""
        self._emit("info", message, self._log_info_fn, logging.INFO)

    def warn(self, message: str) -> None:
        """Log a warning message."""
        self._emit("warn", message, self._log_warn_fn, logging.WARNING)

    def error(self, message: str) -> None:
        """Log an error message."""
        self._emit("error", message, self._log_error_fn, logging.ERROR)

    def _emit(
        self,
        level_name: str,
        message: str,
        runtime_fn: Optional[Callable[[str], None]],
        level: int
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(level_name, message)
            except Exception as e:
                self._logger.debug(f"Log listener failed: {e}")

        if self._initialized and runtime_fn:
            try:
                runtime_fn(message)
                return
            except Exception as e:
                self._logger.debug(f"Runtime logging accessor failed: {e}")
        self._logger.log(level, message)


def get_logger(name: Optional[str] = None) -> SupervisorLogger:
    """
    Create a component logger.

    Args:
        name: Component suffix appended to the package logger name

    Returns:
        New SupervisorLogger instance
    """
    if not name:
        return SupervisorLogger()
    return SupervisorLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Intended for the host application; library code never calls it.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a log file
        json_format: Emit JSON lines instead of plain text

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers = []

    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s [%(name)s] %(levelname)s: %(message)s'
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
