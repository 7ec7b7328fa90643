"""Logging setup for the npm install proxy.

Every module logs through ``logging.getLogger("npm_install_proxy.<area>")``;
the entry point calls ``setup_logging()`` once to attach a rich handler.
"""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_initialized = False

# Third-party loggers that are noisy at DEBUG
_QUIET_LOGGERS = ["asyncio", "uvicorn.error"]


def setup_logging(level: str = "INFO", *, console: Optional[Console] = None) -> None:
    """Attach a ``RichHandler`` to the root logger. Safe to call repeatedly."""
    global _initialized

    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    root = logging.getLogger()
    root.setLevel(numeric)

    if not _initialized:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        root.addHandler(handler)
        _initialized = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.INFO))
