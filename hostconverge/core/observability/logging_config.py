"""
Logging configuration — set up once by the CLI before a pass starts.

Every module logs through ``logging.getLogger(__name__)``.  Records
emitted while a pass runs carry the pass id (``%(pass_id)s``) so the
log file can be matched against the audit ledger.

Level precedence:
    --debug / -v / -q  >  HOSTCONVERGE_LOG_LEVEL  >  WARNING
File output:
    HOSTCONVERGE_LOG_FILE, HOSTCONVERGE_LOG_FILE_LEVEL
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

ENV_LEVEL = "HOSTCONVERGE_LOG_LEVEL"
ENV_FILE = "HOSTCONVERGE_LOG_FILE"
ENV_FILE_LEVEL = "HOSTCONVERGE_LOG_FILE_LEVEL"

# Console: bare messages unless asked for more
_CONSOLE_FORMATS = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s [%(pass_id)s] %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(pass_id)s] %(message)s", "%H:%M:%S"),
}
_FMT_MINIMAL = "%(message)s"

# File output keeps full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s [%(pass_id)s] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class PassContextFilter(logging.Filter):
    """Stamp every record with the id of the pass in progress."""

    current: str = "-"

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "pass_id"):
            record.pass_id = PassContextFilter.current
        return True


@contextmanager
def pass_context(pass_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``pass_id``."""
    previous = PassContextFilter.current
    PassContextFilter.current = pass_id
    try:
        yield
    finally:
        PassContextFilter.current = previous


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = _parse_level(level)
    context = PassContextFilter()

    fmt, datefmt = _CONSOLE_FORMATS.get(
        logging.DEBUG if console_level <= logging.DEBUG else console_level,
        (_FMT_MINIMAL, None),
    )
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(context)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    effective = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        effective = min(effective, file_level)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        fh.addFilter(context)
        root.addHandler(fh)

    root.setLevel(effective)
    logging.raiseExceptions = False


def setup_from_flags(debug: bool = False, verbose: bool = False, quiet: bool = False) -> None:
    """Resolve the level from CLI flags and the environment, then set up."""
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get(ENV_LEVEL, "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
    )


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
