"""Logging setup for Covenant.

Library modules only create loggers (``logging.getLogger(__name__)``). The
CLI calls :func:`configure_logging` once per run, which attaches handlers to
the ``covenant`` package logger; the root logger is left to whoever embeds
the library.

Level resolution, highest first:
    1. Explicit ``level`` argument
    2. COVENANT_LOG_LEVEL env var (DEBUG, INFO, WARNING, ... or a number)
    3. COVENANT_DEBUG=true env var
    4. ``debug=True`` (--debug flag) or ``verbose=True`` (config file)
    5. WARNING

What gets logged where:
    DEBUG    call cycles, unresolvable raise targets, reduced coverage
    INFO     index and audit summaries, classes that could not be checked
    WARNING  unreadable or unparseable sources, depth ceiling reached

Usage:
    from covenant.foundation.logging import configure_logging
    configure_logging(debug=debug, verbose=config.verbose)
"""

import logging
import os
import sys
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import TextIO

PACKAGE_LOGGER = "covenant"

_DEBUG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
_TRUTHY = ("1", "true", "yes", "on")

_MAX_LOG_SESSIONS = 10

# Marks handlers installed here so a reconfigure replaces only its own
_OWNED = "_covenant_owned"


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    level: int | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Pick the console log level from arguments and environment."""
    environ = os.environ if environ is None else environ
    if level is not None:
        return _parse_level(level)
    if env_level := environ.get("COVENANT_LOG_LEVEL"):
        return _parse_level(env_level)
    if environ.get("COVENANT_DEBUG", "").lower() in _TRUTHY or debug or verbose:
        return logging.DEBUG
    return logging.WARNING


def _parse_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    text = level.strip()
    if text.isdigit():
        return int(text)
    return logging.getLevelNamesMapping().get(text.upper(), logging.WARNING)


def prune_session_logs(log_dir: Path, keep: int = _MAX_LOG_SESSIONS) -> list[Path]:
    """Delete all but the ``keep`` newest session logs. Returns what was removed."""
    if not log_dir.is_dir():
        return []
    sessions = sorted(log_dir.glob("session_*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    removed = []
    for stale in sessions[keep:]:
        try:
            stale.unlink()
        except FileNotFoundError:
            continue  # Removed by a concurrent run
        removed.append(stale)
    return removed


def _owned(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED, True)
    return handler


def reset_logging() -> None:
    """Remove the handlers installed by :func:`configure_logging`."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def configure_logging(
    *,
    debug: bool = False,
    verbose: bool = False,
    level: int | str | None = None,
    stream: TextIO | None = None,
    persist: bool = False,
    log_dir: Path | None = None,
) -> int:
    """Configure the ``covenant`` logger for a CLI run.

    Args:
        debug: --debug flag; DEBUG level with timestamps.
        verbose: ``verbose`` from the config file; same effect as ``debug``.
        level: Explicit level, overriding everything else.
        stream: Console stream (default: stderr).
        persist: Also write a DEBUG session log.
        log_dir: Where session logs go (default: ``.covenant/logs`` in the cwd).

    Returns:
        The resolved console level.
    """
    reset_logging()
    console_level = resolve_level(debug=debug, verbose=verbose, level=level)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if persist else console_level)

    console = _owned(logging.StreamHandler(stream or sys.stderr))
    console.setLevel(console_level)
    console.setFormatter(
        logging.Formatter(_DEBUG_FORMAT if console_level <= logging.DEBUG else _CONSOLE_FORMAT)
    )
    logger.addHandler(console)

    if persist:
        directory = log_dir or Path.cwd() / ".covenant" / "logs"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            prune_session_logs(directory, keep=_MAX_LOG_SESSIONS - 1)
            path = directory / f"session_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
            session = _owned(logging.FileHandler(path, mode="w", encoding="utf-8"))
        except OSError as e:
            logger.warning("Session log disabled: %s", e)
        else:
            session.setLevel(logging.DEBUG)
            session.setFormatter(logging.Formatter(_DEBUG_FORMAT))
            logger.addHandler(session)

    logger.debug(
        "Logging configured: console=%s persist=%s",
        logging.getLevelName(console_level),
        persist,
    )
    return console_level
