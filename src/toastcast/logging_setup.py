"""Logging for toastcast.

Handlers hang off the "toastcast" logger only. Component loggers
(toastcast.scheduler, toastcast.narration, ...) can be tuned one by one via
[logging.levels], e.g. to surface the DEBUG-level skip reasons of a tick
without turning on DEBUG everywhere. Simulated runs tag every line.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

ROOT_LOGGER = "toastcast"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
THIRD_PARTY_LOGGERS = ("httpx", "httpcore", "openai", "supabase")

_initialized = False


def _level(name: str, default: int = logging.INFO) -> int:
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


def _format(timestamps: bool, simulated: bool) -> str:
    parts = ["%(asctime)s"] if timestamps else []
    if simulated:
        parts.append("[simulated]")
    parts.append("%(levelname)-5s [%(name)-21s] %(message)s")
    return " ".join(parts)


def _file_handler(log_config: LoggingConfig) -> logging.Handler:
    path = Path(log_config.file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_config.rotate:
        return RotatingFileHandler(
            path,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
        )
    return logging.FileHandler(path)


def setup_logging(
    config: Config,
    verbose: bool = False,
    daemon_mode: bool = False,
    simulated: bool | None = None,
) -> None:
    """
    Attach handlers to the toastcast logger, once per process.

    verbose forces DEBUG for every component and ignores [logging.levels].
    daemon_mode adds timestamps to console lines; file lines always have
    them. simulated defaults to the configured run mode.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_config = config.logging
    if simulated is None:
        simulated = config.simulated

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG if verbose else _level(log_config.level))
    root.handlers.clear()

    # Handlers stay at NOTSET so per-component levels decide what gets through
    if log_config.output in ("console", "both"):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_format(daemon_mode, simulated), DATE_FORMAT))
        root.addHandler(console)

    if log_config.output in ("file", "both") and log_config.file:
        file_handler = _file_handler(log_config)
        file_handler.setFormatter(logging.Formatter(_format(True, simulated), DATE_FORMAT))
        root.addHandler(file_handler)

    if not verbose:
        for component, level in log_config.levels.items():
            logging.getLogger(f"{ROOT_LOGGER}.{component}").setLevel(_level(level))

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def reset_logging() -> None:
    """Drop handlers and component levels so tests can set up again."""
    global _initialized
    _initialized = False
    logging.getLogger(ROOT_LOGGER).handlers.clear()
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(f"{ROOT_LOGGER}."):
            logging.getLogger(name).setLevel(logging.NOTSET)
