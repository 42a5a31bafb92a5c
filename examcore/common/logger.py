"""
Application Logger

This module provides a consistent logging interface for the exam engine,
with configurable log levels, formatters, and handlers. Session activity
("exam log") is written through a context-bound LoggerAdapter so every line
carries the interaction, student, and assessment it belongs to.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
from typing import Dict, Any, Optional, Union, Callable, TypeVar

# Default log format
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Type variable for the decorator
F = TypeVar('F', bound=Callable[..., Any])

# Export public interface
__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings after parsing the log record.

    This allows for easier integration with log aggregation systems
    that consume JSON.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = '%',
        validate: bool = True,
        *,
        indent: Optional[int] = None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the specified record as JSON.

        Args:
            record: Log record to format

        Returns:
            Formatted JSON string
        """
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info:
            log_object["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        # Session context attached by LoggerAdapter
        if hasattr(record, 'data') and isinstance(record.data, dict):
            log_object.update(record.data)

        return json.dumps(log_object, indent=self.indent, default=str)


def configure_logger(
    name: str = "examcore",
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure a logger with appropriate handlers and formatters.

    Args:
        name: Logger name
        level: Log level
        format_string: Log format string
        date_format: Date format string
        use_json: Whether to use JSON formatting
        log_file: Path to log file (if None, no file handler is created)
        console_output: Whether to output logs to console

    Returns:
        Configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(format_string, date_format)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            fallback_logger = logging.getLogger("fallback")
            fallback_logger.warning(f"Could not create log file {log_file}: {e}")

    return logger


def get_logger(
    name: str,
    parent: Optional[logging.Logger] = None
) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name
        parent: Optional parent logger

    Returns:
        Logger instance
    """
    if parent:
        return parent.getChild(name)
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    Sessions use this as their activity log: every record emitted through it
    carries the session identity under ``record.data``, and the plain-text
    message is prefixed with the same identity.
    """

    def __init__(
        self,
        logger: logging.Logger,
        context: Dict[str, Any] = None
    ):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs = kwargs.copy()
        extra = kwargs.get('extra') or {}
        kwargs['extra'] = extra

        data = extra.get('data') or {}
        extra['data'] = data

        if self.extra:
            data.update(self.extra)
            prefix = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"[{prefix}] {msg}"

        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """
        Create a new adapter with additional context.

        Args:
            **context: Context to add

        Returns:
            New logger adapter with combined context
        """
        new_context = dict(self.extra)
        new_context.update(context)
        return LoggerAdapter(self.logger, new_context)


def with_context(name: str = None, **context) -> LoggerAdapter:
    """
    Create a logger adapter with context.

    Args:
        name: Optional child logger name under the application logger
        context: Context dictionary

    Returns:
        Logger adapter with context
    """
    logger = app_logger.getChild(name) if name else app_logger
    return LoggerAdapter(logger, context)


def get_app_logger() -> logging.Logger:
    """
    Get or create the application logger.

    Returns:
        The configured application logger
    """
    logger = logging.getLogger("examcore")

    # Only configure if not already configured
    if not logger.handlers:
        return configure_logger(
            name="examcore",
            level=os.environ.get("LOG_LEVEL", "INFO"),
            use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
            log_file=os.environ.get("LOG_FILE"),
            console_output=True
        )

    return logger

# Initialize the app logger
app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator to log the execution time of a function.

    Args:
        logger: Optional logger to use. If not provided, uses app_logger.

    Returns:
        Decorated function that logs its execution time
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                execution_time = time.time() - start_time
                (logger or app_logger).debug(
                    f"{func.__name__} executed in {execution_time:.3f} seconds"
                )
                return result
            except Exception as e:
                execution_time = time.time() - start_time
                (logger or app_logger).error(
                    f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}"
                )
                raise

        return wrapper
    return decorator
