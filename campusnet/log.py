"""
Process-wide logging setup.

Module code only ever calls ``logging.getLogger(__name__)``; this function
is invoked once from the application factory and from scripts.
"""
import logging
import sys

from campusnet.config import settings

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "passlib")


def configure_logging(level: str | None = None) -> logging.Logger:
    """Install a single stdout handler on the root logger and return it."""
    level_name = (level or settings.LOG_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Avoid stacking handlers when the factory runs more than once (reload, tests).
    for handler in root.handlers[:]:
        if getattr(handler, "_campusnet", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    handler._campusnet = True
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root
