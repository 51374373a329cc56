"""
Logging helpers for survstrat.

Modules obtain their logger with ``logger = get_logger(__name__)``. The package
logger only carries a NullHandler, so nothing is emitted until the calling
report opts in with setup_logging().
"""

import logging
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER_NAME = "survstrat"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under the survstrat package logger."""
    if name != PACKAGE_LOGGER_NAME and not name.startswith(PACKAGE_LOGGER_NAME + "."):
        name = f"{PACKAGE_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    use_rich: bool = True,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Calling this more than once replaces the previously installed handler
    instead of stacking duplicates.

    Args:
        level: Logging level for the package logger
        use_rich: Render records with rich's RichHandler instead of a plain StreamHandler
        console: Optional rich Console to write to (e.g. for capturing output)

    Returns:
        logging.Logger: The configured package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.setLevel(level)

    for handler in list(package_logger.handlers):
        if getattr(handler, "_survstrat_handler", False):
            package_logger.removeHandler(handler)

    if use_rich:
        handler: logging.Handler = RichHandler(
            console=console,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    handler._survstrat_handler = True  # type: ignore[attr-defined]
    handler.setLevel(level)
    package_logger.addHandler(handler)
    return package_logger
