"""Logging bootstrap shared by the API process and standalone workers."""

from __future__ import annotations

import logging

from conversation_analysis.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    chosen = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(level=chosen, format=LOG_FORMAT)
    logging.getLogger("conversation_analysis").setLevel(chosen)
