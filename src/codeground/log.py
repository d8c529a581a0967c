"""Logging setup for the codeground CLI.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
installed once here by the CLI entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "openai")


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route ``codeground.*`` log records to a RichHandler on stderr.

    Safe to call more than once; the previous handler is replaced.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))

    root = logging.getLogger("codeground")
    for old in list(root.handlers):
        if isinstance(old, RichHandler):
            root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
