"""Logging setup with Rich integration."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route ``reconpilot`` loggers through a Rich handler on stderr."""
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=True,
        show_path=False,
    )
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s", force=True)
    logging.getLogger("reconpilot").setLevel(level)
    logging.getLogger("httpx").setLevel(logging.WARNING)
