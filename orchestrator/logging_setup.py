"""Console logging configuration for command-line runs."""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_HANDLER_NAME = "dqn-console"


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Attach a single console handler to the root logger.

    Calling this again only updates the level; it never stacks a second
    handler.

    Args:
        level: Level name or number

    Returns:
        The root logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    root = logging.getLogger()
    root.setLevel(level)

    handler = next((h for h in root.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root.addHandler(handler)
    handler.setLevel(level)

    return root
