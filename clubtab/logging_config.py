"""Logging configuration for console output."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from clubtab.config import LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Route log records through rich on the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )

    # Disable excessive third-party logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
