import logging
import os
import sys

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install the root stream handler once per process.

    The level comes from ``LOG_LEVEL`` unless given explicitly. Calling this
    again only adjusts the level.
    """
    global _configured
    resolved = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(resolved)
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)

    # Keep per-statement SQL out of application logs unless asked for.
    if os.getenv("SQL_ECHO", "").lower() not in {"1", "true", "yes", "on"}:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
