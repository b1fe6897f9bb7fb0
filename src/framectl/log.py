"""Logging setup

Library modules log through named loggers under `framectl`. Nothing is
printed unless the embedding application configures logging, or calls
`configure_logging`.
"""

import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[str, int]] = None) -> logging.Logger:
    """Attach a stream handler to the `framectl` logger

    Args:
        level: level name or number; defaults to the configured FRAMECTL_LOG_LEVEL

    Returns:
        The package logger
    """
    if level is None:
        from framectl.config import ControlConfig

        level = ControlConfig.default().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger("framectl")
    root.setLevel(level)
    if not any(getattr(h, "_framectl", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._framectl = True
        root.addHandler(handler)
    return root
