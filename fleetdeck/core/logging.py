import logging
import sys
from typing import Optional
from fleetdeck.core.config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are chatty at INFO; asyncssh logs every channel open/close.
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncssh", "apscheduler.executors.default")


def resolve_level(name: Optional[str] = None) -> int:
    """DEBUG wins over LOG_LEVEL; unknown names fall back to INFO."""
    if settings.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName((name or settings.LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> int:
    log_level = resolve_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("fleetdeck").info(f"Logging initialized with level: {logging.getLevelName(log_level)}")
    return log_level
