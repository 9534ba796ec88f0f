"""Logging for mailmirror.

Warnings and errors go to the terminal through rich; everything at the
configured level goes to ``logs/app.log`` as one JSON object per line.
Records emitted through ``log_event`` (new mail, moves) are also copied to
``logs/events.log``. Passwords and the local part of mail addresses are
masked before a record reaches any handler.
"""

import json
import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER_NAME = "mailmirror"

APP_LOG_MAX_BYTES = 5 * 1024 * 1024
EVENT_LOG_MAX_BYTES = 2 * 1024 * 1024

# Attributes every LogRecord has; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


def _log_dir() -> Path:
    from .errors import StorageError

    try:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to create log directory: {LOGS_DIR}") from e
    return LOGS_DIR


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields land under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        context = _extra_fields(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


## Masking


class SensitiveDataMasker:
    """Masks credentials and mail addresses in strings and dicts."""

    SENSITIVE_FIELDS = frozenset(
        {"password", "passwd", "pwd", "secret", "token", "authorization", "credential"}
    )

    _SECRET_PATTERN = re.compile(
        r'(password|passwd|pwd|token|secret)(["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)',
        re.IGNORECASE,
    )
    _EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

    def __init__(self, strategy: str = "full"):
        if strategy not in ("full", "partial"):
            raise ValueError(f"Unknown masking strategy: {strategy}")
        self.strategy = strategy

    def mask_func(self, value: str) -> str:
        if self.strategy == "partial" and len(value) > 6:
            return f"{value[:3]}{'*' * (len(value) - 6)}{value[-3:]}"
        return "[REDACTED]"

    def mask_string(self, text: str) -> str:
        if not text or not isinstance(text, str):
            return text

        text = self._SECRET_PATTERN.sub(
            lambda m: m.group(1) + m.group(2) + self.mask_func(m.group(3)), text
        )
        return self._EMAIL_PATTERN.sub(self._mask_email, text)

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._mask_item(key, value) for key, value in data.items()}

    def _mask_item(self, key: Any, value: Any) -> Any:
        if str(key).lower() in self.SENSITIVE_FIELDS:
            return self.mask_func(str(value))
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, str):
            return self.mask_string(value)
        return value

    @staticmethod
    def _mask_email(match: re.Match) -> str:
        local, domain = match.group(1), match.group(2)
        masked = f"{local[0]}***" if len(local) > 1 else "***"
        return f"{masked}@{domain}"


class SensitiveDataFilter(logging.Filter):
    """Applies ``SensitiveDataMasker`` to the message and every extra field."""

    def __init__(self, strategy: str = "full"):
        super().__init__()
        self.masker = SensitiveDataMasker(strategy)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        for key, value in _extra_fields(record).items():
            setattr(record, key, self.masker._mask_item(key, value))

        return True


## Log manager


class LogManager:
    """Owns the handlers attached to the ``mailmirror`` logger."""

    def __init__(self, log_level: str = "INFO"):
        self.log_level = self._level(log_level)
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.root_logger.setLevel(logging.DEBUG)
        self._app_handler: Optional[RotatingFileHandler] = None
        self._install_handlers()

    @staticmethod
    def _level(name: str) -> int:
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Invalid logging level: {name}")
        return level

    def _file_handler(self, name: str, max_bytes: int, backups: int) -> RotatingFileHandler:
        from .errors import StorageError

        try:
            handler = RotatingFileHandler(
                _log_dir() / name, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
            )
        except OSError as e:
            raise StorageError(f"Failed to open log file {name}: {e}") from e

        handler.setFormatter(JSONFormatter())
        return handler

    def _install_handlers(self) -> None:
        masking = SensitiveDataFilter()

        for handler in list(self.root_logger.handlers):
            self.root_logger.removeHandler(handler)
            handler.close()

        console = RichHandler(show_time=True, show_path=False, markup=False, rich_tracebacks=True)
        console.setLevel(logging.WARNING)
        console.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

        self._app_handler = self._file_handler("app.log", APP_LOG_MAX_BYTES, 5)
        self._app_handler.setLevel(self.log_level)

        events = self._file_handler("events.log", EVENT_LOG_MAX_BYTES, 3)
        events.setLevel(logging.INFO)
        events.addFilter(lambda record: hasattr(record, "event_type"))

        for handler in (console, self._app_handler, events):
            handler.addFilter(masking)
            self.root_logger.addHandler(handler)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Child of the ``mailmirror`` logger; module names are used as-is."""

        if not name or name == ROOT_LOGGER_NAME:
            return self.root_logger
        if name.startswith(f"{ROOT_LOGGER_NAME}."):
            return logging.getLogger(name)
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    def set_level(self, level: str) -> None:
        """Change the file log level at runtime."""

        self.log_level = self._level(level)
        if self._app_handler is not None:
            self._app_handler.setLevel(self.log_level)

    def log_event(self, event_type: str, message: str, level: str = "INFO", **extra) -> None:
        self.root_logger.log(
            self._level(level), message, extra={"event_type": event_type, **extra}
        )


## Decorators


@contextmanager
def _timed(func_name: str) -> Iterator[None]:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.debug(f"-> Entering {func_name}")
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.debug(f"<- Error in {func_name} after {time.perf_counter() - start:.3f}s: {e}")
        raise
    logger.debug(f"<- Exiting {func_name} (Duration: {time.perf_counter() - start:.3f}s)")


def log_call(func):
    """Log entry, exit and duration of a call at DEBUG level."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        with _timed(f"{func.__module__}.{func.__qualname__}"):
            return func(*args, **kwargs)

    return wrapper


def async_log_call(func):
    """``log_call`` for coroutine functions."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        with _timed(f"{func.__module__}.{func.__qualname__}"):
            return await func(*args, **kwargs)

    return wrapper


## Module level helpers

_log_manager: Optional[LogManager] = None


def init_logging(log_level: str = "INFO") -> LogManager:
    """Set up logging once; later calls only change the level."""

    global _log_manager

    if _log_manager is None:
        _log_manager = LogManager(log_level)
    else:
        _log_manager.set_level(log_level)
    return _log_manager


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return (_log_manager or init_logging()).get_logger(name)


def log_event(event_type: str, message, **extra) -> None:
    """Record a domain event in ``events.log`` (and ``app.log``).

    ``message`` may be a dict of fields, in which case a generic message is
    used and the dict is merged into the extra context.
    """
    if isinstance(message, dict):
        extra.update(message)
        message = f"Event: {event_type}"

    (_log_manager or init_logging()).log_event(event_type, message, **extra)
