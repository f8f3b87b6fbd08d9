"""Logging configuration."""
import logging

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level="INFO", log_file=None):
    """Configure the ``opsrules`` logger with a rich console handler and optional file."""
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    root = logging.getLogger("opsrules")
    root.setLevel(numeric_level)

    if not root.handlers:
        root.addHandler(RichHandler(level=numeric_level, rich_tracebacks=True, markup=False))

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)

    return root
