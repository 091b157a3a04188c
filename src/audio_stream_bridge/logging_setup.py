"""Logging configuration for the bridge process."""

from __future__ import annotations

import logging
import sys


def setup_logging(*, level: str) -> None:
    """Route all records to stderr; stdout is reserved for the stdio transport."""

    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)

    logging.getLogger("yt_dlp").setLevel(logging.WARNING)
