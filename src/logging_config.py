"""
Logging setup for the mean-variance frontier engine.

All engine loggers live under the ``mv_frontier`` namespace. Frontier points
and rolling windows are solved on worker threads, so every record carries the
thread name. Solver backends log through their own loggers, which are kept
quieter than the engine.
"""

import functools
import logging
import logging.config
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAMESPACE = "mv_frontier"

# cvxpy reports every solve at INFO
SOLVER_LOGGERS = ("__cvxpy__", "cvxpy")

CONSOLE_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"
FILE_FORMAT = (
    "%(asctime)s [%(threadName)s] %(levelname)s %(name)s "
    "%(module)s.%(funcName)s:%(lineno)d: %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _console_handler(level: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": "console",
        "stream": sys.stdout
    }


def _file_handler(level: str, log_file: str) -> Dict[str, Any]:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "file",
        "filename": log_file,
        "maxBytes": 5 * 1024 * 1024,
        "backupCount": 3,
        "encoding": "utf8"
    }


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_console: bool = True,
    solver_log_level: str = "WARNING"
) -> None:
    """Configure the engine namespace and the solver backend loggers.

    Args:
        log_level: Level for engine loggers (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Rotating log file; its directory is created if missing
        log_format: Console format overriding CONSOLE_FORMAT
        enable_console: Attach a stdout handler
        solver_log_level: Level for the solver backend loggers
    """
    level = log_level.upper()

    handlers = {}
    if enable_console:
        handlers["console"] = _console_handler(level)
    if log_file:
        handlers["file"] = _file_handler(level, log_file)

    loggers = {
        LOGGER_NAMESPACE: {
            "level": level,
            "handlers": list(handlers),
            "propagate": False
        }
    }
    for name in SOLVER_LOGGERS:
        loggers[name] = {"level": solver_log_level.upper()}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": log_format or CONSOLE_FORMAT, "datefmt": DATE_FORMAT},
            "file": {"format": FILE_FORMAT, "datefmt": DATE_FORMAT}
        },
        "handlers": handlers,
        "loggers": loggers
    })


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the engine namespace."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


class LoggerMixin:
    """Gives a class a ``logger`` named after the class."""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__name__)


def log_execution_time(func):
    """Log the wall time of each call at INFO, or at ERROR when it raises."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - started
            logger.error(f"{func.__qualname__} failed after {elapsed:.2f}s: {e}")
            raise
        elapsed = time.perf_counter() - started
        logger.info(f"{func.__qualname__} finished in {elapsed:.2f}s")
        return result

    return wrapper


setup_logging()
