"""Console logging for bulletin_ai.

Every module shares one package logger; messages carry a component tag
such as ``[governor]`` or ``[orchestrator]``.
"""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER: Optional[logging.Logger] = None


def get_logger() -> logging.Logger:
    """Return the package logger configured for console output."""

    global _LOGGER
    if _LOGGER is None:
        _LOGGER = logging.getLogger("bulletin_ai")
        if not _LOGGER.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
            _LOGGER.addHandler(handler)
        _LOGGER.setLevel(logging.INFO)
    return _LOGGER


def set_verbosity(verbose: bool) -> None:
    get_logger().setLevel(logging.DEBUG if verbose else logging.INFO)
