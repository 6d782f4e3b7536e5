import logging

from .settings import LOG_LEVEL

FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """
    Configure the ``marketplace`` logger hierarchy.

    One console handler, installed once; calling again only adjusts the level.
    """
    logger = logging.getLogger("marketplace")
    logger.setLevel(level.upper())

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger
