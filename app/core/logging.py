"""
Logging configuration for the absence workflow service
"""
import logging
import sys
from typing import Optional
from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging to stdout

    The API uses settings.LOG_LEVEL; the sweep and dispatch scripts may pass
    their own level. Workflow transitions log at INFO under app.services.*.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # SQL echo is only useful when debugging the compare-and-set updates
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if log_level <= logging.DEBUG else logging.WARNING
    )

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, env=%s", level_name, settings.APP_ENV
    )
