import logging
import os

from rich.logging import RichHandler

_DEFAULT_NAME = "shop"


class PaddedNameFormatter(logging.Formatter):
    """Pads logger names to the widest name seen so far, so messages line up."""

    name_width = 12

    def format(self, record):
        PaddedNameFormatter.name_width = max(
            PaddedNameFormatter.name_width, len(record.name)
        )
        record.name = record.name.ljust(PaddedNameFormatter.name_width)
        return super().format(record)


def _level_from_env() -> int:
    if os.getenv("DEBUG"):
        return logging.DEBUG
    level = getattr(logging, os.getenv("SHOP_LOG_LEVEL", "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.

    DEBUG in the environment forces debug output, otherwise SHOP_LOG_LEVEL
    (default INFO) decides.
    """
    logger = logging.getLogger(name or _DEFAULT_NAME)
    log_level = _level_from_env()
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(PaddedNameFormatter("[%(name)s]  %(message)s"))
        handler.setLevel(log_level)
        logger.addHandler(handler)

        logger.propagate = False
        logger.debug(f"Logger for '{logger.name}' ready.")

    return logger
