"""
Structured logging system for the mint engine
"""

import logging
import json
import sys
import time
import functools
from typing import Dict, Any, Optional
from datetime import datetime, timezone

# Context fields promoted to top-level keys of the JSON record
CONTEXT_FIELDS = ('deposit_id', 'sequence', 'stage', 'tx_hash', 'asset_name', 'tick')

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message',
}


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # Minting context
        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in CONTEXT_FIELDS:
                extra_fields[key] = value

        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)


class ContextualLogger:
    """Logger with contextual information"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.context: Dict[str, Any] = {}

    def with_context(self, **kwargs) -> 'ContextualLogger':
        """Create a new logger instance with additional context"""
        new_logger = ContextualLogger(self.logger)
        new_logger.context = {**self.context, **kwargs}
        return new_logger

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra.update(self.context)
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

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_structured: bool = True
) -> ContextualLogger:
    """Route every logger through one set of handlers on the root logger"""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    formatter = StructuredFormatter() if enable_structured else logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    return ContextualLogger(root_logger)


def log_performance(logger: ContextualLogger, operation: str):
    """Log the duration and outcome of an async call; exceptions propagate"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            status = "error"
            try:
                result = await func(*args, **kwargs)
                status = "success"
                return result
            finally:
                duration = time.monotonic() - start_time
                log = logger.info if status == "success" else logger.error
                log(
                    f"{operation} finished with {status} in {duration:.2f}s",
                    extra={"operation": operation, "duration": duration, "status": status},
                )
        return wrapper
    return decorator


def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger for a specific module"""
    return ContextualLogger(logging.getLogger(name))
