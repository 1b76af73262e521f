"""Logging setup for db-cloner.

Every module logs through ``logging.getLogger(__name__)``, which places it
under the ``db_cloner`` namespace.  Applications (and the CLI) call
``configure_logging()`` once to route that namespace to a rich console
handler.

Example:
    >>> import logging
    >>> from db_cloner.logging_config import configure_logging
    >>> configure_logging(level=logging.DEBUG)
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# The logger namespace shared by every db_cloner module
LOGGER_NAME = "db_cloner"

LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that are noisy at DEBUG
RELATED_LOGGERS = [
    "sqlalchemy.engine",
    "asyncpg",
]


def get_logger(name: str | None = None) -> logging.Logger:
    """Get the db_cloner logger or one of its children.

    Example:
        >>> get_logger("cloner").name
        'db_cloner.cloner'
    """
    if name is None:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def configure_logging(
    level: int = logging.WARNING,
    library_level: int = logging.WARNING,
    console: Console | None = None,
) -> logging.Logger:
    """Route db_cloner log records to a rich console handler.

    Calling it again only adjusts levels; the handler is installed once.

    Args:
        level: Level of the db_cloner logger.
        library_level: Level of the SQLAlchemy and asyncpg loggers.
        console: Console to log to (stderr by default).

    Returns:
        The configured db_cloner logger.
    """
    logger = get_logger()
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
            log_time_format=LOG_TIME_FORMAT,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    for logger_name in RELATED_LOGGERS:
        logging.getLogger(logger_name).setLevel(library_level)

    return logger
