"""Logging setup for command line entry points."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    console: Console | None = None,
) -> None:
    """Route library logging through rich, optionally mirroring it to a file.

    Calling it again replaces the handlers installed by a previous call.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_gh_triage", False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [
        RichHandler(console=console, show_path=verbose, rich_tracebacks=True)
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler._gh_triage = True  # type: ignore[attr-defined]
        handler.setLevel(level)
        root.addHandler(handler)
    root.setLevel(level)

    # Third-party clients are chatty at DEBUG
    for name in ("urllib3", "github", "slack_sdk", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)
