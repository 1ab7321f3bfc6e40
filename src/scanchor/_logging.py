"""Logging for scanchor.

All modules log through the ``scanchor`` logger or its children:

- INFO marks stage milestones (basis size, merge order, anchors kept per
  merge step, cluster counts, stage timings);
- DEBUG reports per-chunk progress of the long loops (neighbor search,
  anchor scoring, correction field, label voting);
- WARNING flags results computed on a fallback path, such as an
  approximate search redone exactly.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Literal

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ROOT = "scanchor"


def get_logger(name: str = _ROOT) -> logging.Logger:
    """Get the package logger or one of its children.

    Parameters
    ----------
    name : str, optional
        Dotted logger name, by default "scanchor". Only the package root is
        given a handler; children propagate to it.

    Returns
    -------
    logging.Logger
    """
    logger = logging.getLogger(name)
    if name == _ROOT and not logger.handlers:
        _setup_default_handler(logger)
    return logger


def _setup_default_handler(logger: logging.Logger) -> None:
    """Short stderr format at INFO, until ``setup_logging`` replaces it."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def setup_logging(
    level: int | Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = logging.INFO,
    format_string: str | None = None,
) -> None:
    """Reconfigure the package logger.

    Any handler installed earlier, including the default one, is removed, so
    calling this repeatedly never duplicates output. Use ``"DEBUG"`` to see
    chunk progress of long-running stages.

    Parameters
    ----------
    level : int or str, optional
        Logging level, by default logging.INFO
    format_string : str, optional
        Format of each record, by default a timestamped format that
        includes the emitting module.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(format_string or _LOG_FORMAT, datefmt=_DATE_FORMAT))

    logger = get_logger()
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)


def log_progress(what: str, done: int, total: int) -> None:
    """DEBUG record of chunked progress, e.g. ``"Exact neighbor search: 2048/9000"``."""
    logger.debug("%s: %d/%d.", what, done, total)


logger = get_logger()
