"""
Logging configuration for gitmem.

Log records go to stderr through a rich handler so they never mix with
command output written to stdout (``--format json`` stays parseable).
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_ROOT = "gitmem"


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the ``gitmem`` logger.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Suppress all but ERROR level logging
        log_file: Optional file path to append logs to

    Returns:
        The configured ``gitmem`` logger
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            tracebacks_show_locals=verbose,
            markup=False,
            show_time=verbose,
            show_path=verbose,
        )
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        handlers.append(file_handler)

    logger = logging.getLogger(_ROOT)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    # Keep records away from whatever the host application put on root.
    logger.propagate = False

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger under the ``gitmem`` namespace.

    Args:
        name: Module name (e.g. ``__name__``). Names outside the package
              are nested under ``gitmem.``.
    """
    if name is None:
        return logging.getLogger(_ROOT)

    if not name.startswith(_ROOT):
        name = f"{_ROOT}.{name}"

    return logging.getLogger(name)
