import logging
import sys

from tradeguard.config import settings

ROOT_LOGGER = "tradeguard"
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the ``tradeguard`` logger tree once per process."""
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if not any(getattr(h, "_tradeguard", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tradeguard = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # Keep SQL echo out of application logs unless explicitly asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
