import logging
import sys

from remit.utils.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level or settings.log_level)

    # Replace our own handler on re-entry (lifespan runs once per app start).
    for handler in root_logger.handlers[:]:
        if getattr(handler, "_remit_handler", False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._remit_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
