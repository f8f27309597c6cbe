# kg_pipeline/logging_utils.py

from __future__ import annotations

import logging
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from kg_pipeline.config.settings import settings


def configure_logging(
    level: Optional[Union[int, str]] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Route `kg_pipeline.*` loggers through a RichHandler.

    Safe to call more than once; the previous handler is replaced.
    """
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("kg_pipeline")
    for existing in list(logger.handlers):
        if isinstance(existing, RichHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    # Library chatter stays at WARNING unless we are debugging.
    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "openai", "urllib3"):
        logging.getLogger(name).setLevel(noisy_level)
