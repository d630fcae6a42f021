import logging
import os

FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "toolmanager") -> logging.Logger:
    """Return a logger with a single console handler attached to the package root."""
    root = logging.getLogger("toolmanager")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logging.getLogger(name)
