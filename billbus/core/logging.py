from __future__ import annotations

import logging

from billbus.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Configure the root logger once per process; later calls only adjust the level.
    global _configured
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    if not _configured:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
        _configured = True
    logging.getLogger().setLevel(level)
    # Keep SQL echo out of application logs unless explicitly at DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
