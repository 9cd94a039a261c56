"""
Logging setup for the generation service.

Every record carries the request's correlation ID and, while a generation
call is running, its task kind. Provider credentials are masked before a
record reaches any handler.
"""
import inspect
import json
import logging
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
task_kind_var: ContextVar[Optional[str]] = ContextVar('task_kind', default=None)

# Gemini keys, Groq keys and bearer tokens
SECRET_PATTERNS = [
    (re.compile(r'(api[_-]?key\s*[=:]\s*)["\']?[\w-]{20,}["\']?', re.IGNORECASE), r'\1***MASKED***'),
    (re.compile(r'\bAIza[\w-]{30,}'), '***MASKED***'),
    (re.compile(r'\bgsk_[\w]{20,}'), '***MASKED***'),
    (re.compile(r'(bearer\s+)[\w.-]{20,}', re.IGNORECASE), r'\1***MASKED***'),
    (re.compile(r'(authorization\s*[=:]\s*)["\']?[\w-]{20,}["\']?', re.IGNORECASE), r'\1***MASKED***'),
]

BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOG_FILE_NAME = "app.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FORMAT = "%(asctime)s - [%(correlation_id)s] [%(task_kind)s] - %(name)s - %(levelname)s - %(message)s"


def mask_secrets(text: str) -> str:
    """Mask sensitive values in text."""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretMaskingFilter(logging.Filter):
    """Masks credentials in the message and its string arguments."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = mask_secrets(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                mask_secrets(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class RequestContextFilter(logging.Filter):
    """Stamps records with the current correlation ID and task kind."""

    def filter(self, record):
        record.correlation_id = correlation_id_var.get() or "N/A"
        record.task_kind = task_kind_var.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shipping."""

    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', 'N/A'),
            "task_kind": getattr(record, 'task_kind', None),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)
        return json.dumps(log_data, ensure_ascii=False)


class ColorFormatter(logging.Formatter):
    """Console formatter that colours each line by level."""

    RESET = "\x1b[0m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[38;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def __init__(self):
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, "")
        return f"{color}{super().format(record)}{self.RESET}"


def setup_log_file(clear_log: bool = False) -> Path:
    """
    Handles log file creation and clearing.
    """
    LOGS_DIR.mkdir(exist_ok=True)
    log_file = LOGS_DIR / LOG_FILE_NAME
    if clear_log and log_file.exists():
        log_file.write_text("")
    return log_file


def configure_logger(name: str = "app", log_level: int = logging.INFO, use_json: bool = False,
                     mask_secrets: bool = True, max_bytes: int = 5 * 1024 * 1024,
                     backup_count: int = 5) -> logging.Logger:
    """
    Attach console and rotating file handlers to the ``name`` logger.

    Calling it again for an already configured logger only updates the level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    if logger.hasHandlers():
        return logger

    filters = [RequestContextFilter()]
    if mask_secrets:
        filters.append(SecretMaskingFilter())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColorFormatter())

    file_handler = RotatingFileHandler(
        LOGS_DIR / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if use_json:
        file_handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    for handler in (console_handler, file_handler):
        for log_filter in filters:
            handler.addFilter(log_filter)
        logger.addHandler(handler)
    return logger


def setup_logger(name: str = "app", log_level: int = logging.INFO, clear_log: bool = False,
                 use_json: bool = False, mask_secrets: bool = True, max_bytes: int = 5 * 1024 * 1024,
                 backup_count: int = 5) -> logging.Logger:
    """
    Sets up a logger with console (colored) and file (rotating) handlers.

    Args:
        name: Logger name
        log_level: Logging level
        clear_log: If True, clears the log file at startup
        use_json: If True, uses JSON formatter for file output
        mask_secrets: If True, masks provider keys and tokens in logs
        max_bytes: Rotate the log file once it reaches this size
        backup_count: Number of rotated files to keep
    """
    setup_log_file(clear_log)
    return configure_logger(name, log_level, use_json, mask_secrets, max_bytes, backup_count)


def set_correlation_id(correlation_id: str):
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID for the current context."""
    return correlation_id_var.get()


@contextmanager
def task_context(task_kind: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``task_kind``."""
    token = task_kind_var.set(task_kind)
    try:
        yield
    finally:
        task_kind_var.reset(token)


logger = logging.getLogger(__name__)


def log_async_execution_time(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to log the execution time of a coroutine function.
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"{func.__name__} is not a coroutine function")

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        logger.debug(f"Starting async execution of: {func.__qualname__}")
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(f"Error in async {func.__qualname__} after {duration:.4f} seconds: {e}")
            raise
        duration = time.perf_counter() - start_time
        logger.info(f"Finished async execution of: {func.__qualname__} in {duration:.4f} seconds")
        return result
    return wrapper
