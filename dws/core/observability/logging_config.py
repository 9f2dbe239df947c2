"""
Logging configuration — one setup call per process.

The CLI calls ``setup_logging`` once; every module logs through
``logging.getLogger(__name__)`` and inherits it.

Console level precedence:
    --debug / --verbose / --quiet  >  DWS_LOG_LEVEL  >  WARNING

A log file is added when DWS_LOG_FILE is set, at DWS_LOG_FILE_LEVEL
(defaulting to the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LEVEL = "DWS_LOG_LEVEL"
ENV_FILE = "DWS_LOG_FILE"
ENV_FILE_LEVEL = "DWS_LOG_FILE_LEVEL"

# Console formats by verbosity. WARNING and above print bare messages.
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_FMT_PLAIN = "%(message)s"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


def parse_level(level: str | int | None, default: int = logging.WARNING) -> int:
    """Level name (case-insensitive) or number → numeric level."""
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(level.strip().upper())
    return numeric if isinstance(numeric, int) else default


def resolve_level(flag: str | None, env: Mapping[str, str] | None = None) -> int:
    """Apply flag > env > WARNING precedence."""
    env = os.environ if env is None else env
    if flag:
        return parse_level(flag)
    return parse_level(env.get(ENV_LEVEL))


def _console_formatter(level: int) -> logging.Formatter:
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter(_FMT_PLAIN)


def setup_logging(
    level: str | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Configure the root logger for this process.

    Args:
        level: Level from a CLI flag, or None to consult the environment.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        The effective console level.
    """
    env = os.environ if env is None else env
    console_level = resolve_level(level, env)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    root.addHandler(console)

    effective = console_level
    log_file = env.get(ENV_FILE, "").strip()
    if log_file:
        file_level = parse_level(env.get(ENV_FILE_LEVEL), default=console_level)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(handler)
        effective = min(effective, file_level)

    root.setLevel(effective)

    logging.raiseExceptions = False
    return console_level
