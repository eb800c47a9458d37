"""Root logger setup for CLI commands."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route all ``logging`` output through a Rich handler at *level*.

    Unknown level names fall back to ``INFO``.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                show_path=False,
                log_time_format="[%X]",
                rich_tracebacks=True,
            )
        ],
        force=True,
    )
    # httpx logs every request at INFO; keep it for debugging only
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
