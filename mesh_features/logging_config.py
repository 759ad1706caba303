"""
Logging setup for mesh_features.

Every module logs through ``logging.getLogger(__name__)`` and attaches
structured fields with ``extra={}`` (mesh ids, triangle and feature counts,
elapsed seconds). This module decides how those records are rendered:

- JSONFormatter writes one JSON object per line, extra fields at top level
- ConsoleFormatter writes a short coloured line with the extras in brackets
- log_timing / timed wrap a detection phase with begin/end records
- LogContext stamps fields (batch name, source folder) on every record
  emitted inside a ``with`` block

Usage:
    from mesh_features.logging_config import setup_logging

    setup_logging(level=logging.INFO, json_file="features.log.json")
    logger = logging.getLogger(__name__)
    logger.info("Detected features", extra={"mesh_id": mesh_id, "planes": 6})
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, Union

import numpy as np

F = TypeVar('F', bound=Callable[..., Any])

PACKAGE_LOGGER = "mesh_features"

# Attributes set by logging itself; everything else on a record came from extra={}
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    'message', 'asctime', 'taskName',
}

# Console rendering
_MESH_ID_WIDTH = 17
_MAX_INLINE_ITEMS = 3


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


def _to_json_value(value: Any) -> Any:
    """Plain JSON value for an extra field; numpy values unwrapped, others str()."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def _wants_location(levelno: int) -> bool:
    return levelno <= logging.DEBUG or levelno >= logging.WARNING


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message``, ``thread``;
    ``location`` for DEBUG and for WARNING and above; ``exception`` when
    the record carries one. Extra fields follow at the top level.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = dict(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            thread=record.threadName,
        )
        if _wants_location(record.levelno):
            entry['location'] = dict(
                file=record.filename, line=record.lineno, function=record.funcName)
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        if self.include_extra:
            entry.update((k, _to_json_value(v)) for k, v in _record_fields(record).items())
        return json.dumps(entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output.

    ``[HH:MM:SS] LEVEL    pool: message [mesh_id=mesh_1a2b3c4d5e6f, planes=6]``

    Logger names lose the ``mesh_features.`` prefix; long mesh ids, long
    sequences and floats are shortened.
    """

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True, show_extra: bool = True):
        super().__init__()
        self.use_colors = use_colors
        self.show_extra = show_extra

    @staticmethod
    def _format_value(key: str, value: Any) -> str:
        if isinstance(value, (float, np.floating)):
            text = f"{value:.3g}"
        elif isinstance(value, np.ndarray) and value.size > _MAX_INLINE_ITEMS:
            text = f"[...{value.size} items]"
        elif isinstance(value, (list, tuple)) and len(value) > _MAX_INLINE_ITEMS:
            text = f"[...{len(value)} items]"
        elif key == "mesh_id" and isinstance(value, str):
            text = value[:_MESH_ID_WIDTH]
        else:
            text = str(value)
        return f"{key}={text}"

    def _level(self, record: logging.LogRecord) -> str:
        label = f"{record.levelname:8}"
        color = self.LEVEL_COLORS.get(record.levelno)
        if self.use_colors and color:
            return f"{color}{label}{self.RESET}"
        return label

    @staticmethod
    def _short_name(name: str) -> str:
        prefix = PACKAGE_LOGGER + "."
        return name[len(prefix):] if name.startswith(prefix) else name

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"[{stamp}] {self._level(record)} {self._short_name(record.name)}: {record.getMessage()}"

        if self.show_extra:
            fields = [self._format_value(k, v) for k, v in _record_fields(record).items()]
            if fields:
                line += " [" + ", ".join(fields) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _attach(logger: logging.Logger, handler: logging.Handler,
            formatter: logging.Formatter, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(
    level: int = logging.INFO,
    json_file: Optional[Union[str, Path]] = None,
    console: bool = True,
    use_colors: bool = True,
    root_logger: bool = False,
) -> logging.Logger:
    """Install handlers on the package logger (or the root logger).

    Calling it again replaces the handlers of the previous call. The package
    logger stops propagating so that records are not printed twice when the
    host application also configures the root logger.

    Args:
        level: Threshold for the logger and its handlers
        json_file: Also append JSON lines to this file
        console: Write ConsoleFormatter lines to stderr
        use_colors: ANSI colours on the console
        root_logger: Configure ``""`` instead of ``mesh_features``

    Returns:
        The configured logger
    """
    logger = logging.getLogger("" if root_logger else PACKAGE_LOGGER)
    logger.setLevel(level)

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    if console:
        _attach(logger, logging.StreamHandler(sys.stderr),
                ConsoleFormatter(use_colors=use_colors), level)
    if json_file:
        _attach(logger, logging.FileHandler(Path(json_file), encoding='utf-8'),
                JSONFormatter(), level)

    if not root_logger:
        logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_timing(
    logger: logging.Logger,
    operation: str,
    level: int = logging.DEBUG,
    **extra_fields: Any
) -> Iterator[Dict[str, Any]]:
    """Log the start, end and duration of a phase.

    The yielded dict is merged into the completion record, so a phase can
    report what it produced. A failure is logged at ERROR and re-raised.

    Example:
        with log_timing(logger, "Growing planes", mesh_id=mesh_id) as info:
            regions, residual = grower.grow()
            info["planes"] = len(regions)
    """
    results: Dict[str, Any] = {}
    started = time.perf_counter()
    logger.log(level, "Starting: %s", operation,
               extra={"phase": operation, "stage": "begin", **extra_fields})
    try:
        yield results
    except Exception as e:
        elapsed = time.perf_counter() - started
        logger.error("Failed: %s after %.3fs: %s", operation, elapsed, e,
                     extra={"phase": operation, "stage": "error", "elapsed_seconds": elapsed,
                            "error": str(e), **extra_fields})
        raise
    results['elapsed_seconds'] = time.perf_counter() - started
    logger.log(level, "Completed: %s (%.3fs)", operation, results['elapsed_seconds'],
               extra={"phase": operation, "stage": "end", **extra_fields, **results})


def timed(
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG,
    operation: Optional[str] = None,
) -> Callable[[F], F]:
    """Decorator form of log_timing.

    Defaults to the decorated function's module logger and name.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with log_timing(logger or logging.getLogger(func.__module__),
                            operation or func.__name__, level):
                return func(*args, **kwargs)
        return wrapper  # type: ignore
    return decorator


class _FieldsFilter(logging.Filter):
    """Sets fields a record does not already have."""

    def __init__(self, fields: Dict[str, Any]):
        super().__init__()
        self.fields = fields

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.fields.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class LogContext:
    """Stamp fields on every mesh_features record logged inside the block.

    Fields given explicitly through ``extra={}`` win over context fields.
    Contexts nest; ``LogContext.current()`` is the innermost one.

    Example:
        with LogContext(batch="nightly", source_dir="parts/"):
            pool.batch_preprocess(mesh_ids)
    """

    _stack: List['LogContext'] = []

    def __init__(self, **fields: Any):
        self.fields = fields
        self._filter = _FieldsFilter(fields)

    def __enter__(self) -> 'LogContext':
        logging.getLogger(PACKAGE_LOGGER).addFilter(self._filter)
        LogContext._stack.append(self)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        logging.getLogger(PACKAGE_LOGGER).removeFilter(self._filter)
        LogContext._stack.remove(self)

    @classmethod
    def current(cls) -> Optional['LogContext']:
        return cls._stack[-1] if cls._stack else None


def configure_default_logging(verbose: bool = False) -> logging.Logger:
    """Console logging at DEBUG when verbose, INFO otherwise."""
    return setup_logging(level=logging.DEBUG if verbose else logging.INFO,
                         console=True, use_colors=sys.stderr.isatty())
