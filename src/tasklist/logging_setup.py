from __future__ import annotations

import logging
import sys
from typing import Union

_HANDLER_NAME = "tasklist-console"


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configure the 'tasklist' logger with a single stderr handler.

    Safe to call more than once: the handler is installed only the first time,
    later calls just adjust the level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown log level: {level}")

    logger = logging.getLogger("tasklist")
    logger.setLevel(level)

    if any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
