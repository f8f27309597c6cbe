# kg_pipeline/retry.py

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from tenacity import (
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import TransientExternalError

logger = logging.getLogger(__name__)

JITTER_S = 0.5


def retry_policy(
    attempts: Optional[int] = None,
    initial_wait: Optional[float] = None,
    max_wait: Optional[float] = None,
) -> Dict[str, Any]:
    """
    tenacity keyword arguments for retrying TransientExternalError with
    exponential backoff. Unset values come from settings.

    Usable as `Retrying(**retry_policy())` / `AsyncRetrying(**retry_policy())`.
    """
    if attempts is None:
        attempts = settings.retry_attempts
    if initial_wait is None:
        initial_wait = settings.retry_initial_wait_s
    if max_wait is None:
        max_wait = settings.retry_max_wait_s

    return dict(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=initial_wait, max=max_wait)
        + wait_random(0, min(JITTER_S, max_wait)),
        retry=retry_if_exception_type(TransientExternalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
