# backend/app/core/logging.py
import logging
from typing import Optional

from backend.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by DATABASE_ECHO, keep the engine logger quiet otherwise
    if not settings.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def short(value: str, length: int = 10) -> str:
    """Truncate addresses and credential ids for log lines."""
    if not value:
        return "<none>"
    return value if len(value) <= length else f"{value[:length]}..."
