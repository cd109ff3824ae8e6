from __future__ import annotations

import logging

from venuedesk.core.config import Settings, get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    # Configure the root logger once; repeated app factories reuse existing handlers.
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # Quiet SQL echo noise unless explicitly debugging.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
