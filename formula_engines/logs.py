from __future__ import annotations

import sys
from typing import Optional

from loguru import logger

from formula_engines.config import get_config

_SINK_ID: Optional[int] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stderr sink; safe to call more than once."""
    global _SINK_ID
    lvl = (level or get_config().log_level).upper()
    if _SINK_ID is not None:
        logger.remove(_SINK_ID)
    else:
        logger.remove()
    _SINK_ID = logger.add(
        sys.stderr,
        level=lvl,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {name}:{line} - {message}",
    )
