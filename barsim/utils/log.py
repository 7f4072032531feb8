"""Logging setup for scripts (library modules only call logging.getLogger)."""
import logging
import os


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str | int | None = None) -> None:
    """
    Configure the root logger with a single stream handler.

    Level precedence: argument > BARSIM_LOG_LEVEL env > INFO.
    """
    if level is None:
        level = os.getenv("BARSIM_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
