"""Logging setup for the CLI and the stdio MCP server."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int = logging.INFO) -> None:
    """Route ``wormhole`` loggers to stderr.

    stdout carries the MCP stdio protocol, so nothing may be printed there
    while the server runs.
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger("wormhole")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
