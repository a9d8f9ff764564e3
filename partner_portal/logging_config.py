from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Attach one stream handler to the package logger; safe to call repeatedly."""
    resolved = (level or os.environ.get("LOG_LEVEL", "INFO")).strip().upper() or "INFO"
    logger = logging.getLogger("partner_portal")
    logger.setLevel(resolved)
    if not any(getattr(h, "_partner_portal", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._partner_portal = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
