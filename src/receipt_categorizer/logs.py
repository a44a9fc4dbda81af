"""Logging setup shared by the CLI and the queue worker."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from receipt_categorizer.config import LOG_LEVEL


def configure_logging(level: str | int | None = None) -> None:
    """Route all log records through a stderr rich handler."""
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(name)s  %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
