"""Logging utilities shared by the dashboard backend."""

from __future__ import annotations

import logging
import os
from typing import Optional

_CONFIGURED: Optional[bool] = None


def get_logger(name: str = "dashboard") -> logging.Logger:
    """Return a named logger; the root handler is configured once per process."""
    global _CONFIGURED
    if _CONFIGURED is None:
        level = os.getenv("DASHBOARD_LOG_LEVEL", "INFO").strip().upper() or "INFO"
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        _CONFIGURED = True
    return logging.getLogger(name)
