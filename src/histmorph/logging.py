"""
Logging configuration for histmorph.

The ``histmorph`` logger writes through a rich handler that prefixes every
message with the stem of the emitting module, e.g. ``[engine] Recomputed ...``.
Everything else goes to stderr at WARNING.
"""

from __future__ import annotations

import logging
import logging.config
from logging import LogRecord
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "histmorph"


class AppFilter(logging.Filter):
    """Attach ``filenameStem`` (``engine`` for ``.../engine.py``) to each record."""

    def filter(self, record: LogRecord) -> bool:
        record.filenameStem = Path(record.filename).stem
        return True


def rich_handler_factory(width: int = 160) -> RichHandler:
    # numpy frames add nothing to tracebacks raised from template arithmetic
    return RichHandler(
        console=Console(width=width),
        rich_tracebacks=True,
        tracebacks_suppress=["numpy"],
        markup=True,
    )


def logging_config(level: str | int = "INFO") -> dict[str, Any]:
    """
    Configuration dictionary for :func:`logging.config.dictConfig`.

    Args:
        level: level of the ``histmorph`` logger
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"stem": {"()": AppFilter}},
        "formatters": {
            "plain": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
            "module": {"format": "[[yellow]%(filenameStem)s[/]] %(message)s"},
        },
        "handlers": {
            "stderr": {
                "formatter": "plain",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "rich": {
                "()": rich_handler_factory,
                "formatter": "module",
                "filters": ["stem"],
            },
        },
        "loggers": {
            "": {"handlers": ["stderr"], "level": "WARNING", "propagate": False},
            PACKAGE_LOGGER: {"handlers": ["rich"], "level": level, "propagate": False},
        },
    }


LOGGING_CONFIG = logging_config()


def setup(level: str | int | None = None) -> None:
    """
    Route ``histmorph`` log records to a rich console handler.

    Args:
        level: level of the ``histmorph`` logger, INFO if not given
    """
    logging.config.dictConfig(logging_config("INFO" if level is None else level))


__all__ = ("LOGGING_CONFIG", "logging_config", "setup")
