import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

log = logging.getLogger("crowdtoken")


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Configure root logging for scripts and services embedding crowdtoken."""
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    log.setLevel(level)
    return log
