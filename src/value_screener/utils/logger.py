"""
Centralized logging for the value screener.

Every module calls ``get_logger(__name__)`` and receives a Loguru logger bound
with its name and utility. Sinks are created lazily on first use.
"""

import logging
import atexit
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from loguru import logger as _loguru_logger

# One log file per utility per process run
RUN_ID = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{os.getpid()}"

LOGS_BASE_DIR = Path(os.getenv("VALUE_SCREENER_LOG_DIR", Path.cwd() / "logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "1").strip().lower() in {"1", "true", "yes"}

UTILITIES = ("finnhub", "pipeline", "scoring", "database", "general")

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {extra[utility]:<9} | {message} | {function}:{line}"

_sinks_initialized = False
_console_sink_id: Optional[int] = None
_file_sink_ids: Dict[str, int] = {}


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (aiohttp, psycopg) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _loguru_logger.level(record.levelname).name
        except (ValueError, AttributeError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _loguru_logger.opt(depth=depth, exception=record.exc_info).bind(
            name=record.name, utility="general"
        ).log(level, record.getMessage())


def _detect_utility(name: str) -> str:
    lower_name = name.lower()
    if "finnhub" in lower_name or "rate_limiter" in lower_name or "universe" in lower_name:
        return "finnhub"
    if "pipeline" in lower_name or "currency" in lower_name:
        return "pipeline"
    if "scoring" in lower_name:
        return "scoring"
    if "database" in lower_name:
        return "database"
    return "general"


def _ensure_utility_dir(utility: str) -> Path:
    path = LOGS_BASE_DIR / utility
    path.mkdir(parents=True, exist_ok=True)
    return path


def init_logging_structure() -> None:
    """Create the per-utility log directories."""
    for utility in UTILITIES:
        _ensure_utility_dir(utility)


def _initialize_sinks_once() -> None:
    """Install the console sink (stderr, stdout carries CLI output) and the stdlib intercept."""
    global _sinks_initialized, _console_sink_id
    if _sinks_initialized:
        return

    _loguru_logger.remove()
    _loguru_logger.configure(extra={"utility": "general", "name": "root"})
    _console_sink_id = _loguru_logger.add(
        sys.stderr, level=LOG_LEVEL, enqueue=True, format=LOG_FORMAT
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    _sinks_initialized = True


def _ensure_file_sink_for_utility(utility: str) -> None:
    """Add a rotating file sink that only receives records of ``utility``."""
    if not LOG_TO_FILE or utility in _file_sink_ids:
        return

    log_file = _ensure_utility_dir(utility) / f"{utility}_{RUN_ID}.log"
    _file_sink_ids[utility] = _loguru_logger.add(
        str(log_file),
        level=LOG_LEVEL,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
        enqueue=True,
        format=LOG_FORMAT,
        filter=lambda record, u=utility: record["extra"].get("utility") == u,
    )


def get_logger(name: str, utility: Optional[str] = None):
    """Return a Loguru logger bound with ``name`` and ``utility``.

    The utility is detected from the module name when not given and decides
    which file sink the records land in.
    """
    utility = utility or _detect_utility(name)
    _initialize_sinks_once()
    _ensure_file_sink_for_utility(utility)
    return _loguru_logger.bind(name=name, utility=utility)


def shutdown_logging() -> None:
    """Remove all sinks so queued messages are flushed. Safe to call twice."""
    global _sinks_initialized, _console_sink_id

    for sink_id in list(_file_sink_ids.values()):
        try:
            _loguru_logger.remove(sink_id)
        except ValueError as e:
            sys.stderr.write(f"Error removing file sink id={sink_id}: {e}\n")
    _file_sink_ids.clear()

    if _console_sink_id is not None:
        try:
            _loguru_logger.remove(_console_sink_id)
        except ValueError as e:
            sys.stderr.write(f"Error removing console sink id={_console_sink_id}: {e}\n")
    _console_sink_id = None
    _sinks_initialized = False


atexit.register(shutdown_logging)
