"""
Cache-backed locks that serialize crawl runs per scraping config.
"""

import logging
from contextlib import contextmanager

from django.core.cache import cache

logger = logging.getLogger(__name__)


class RunInProgress(Exception):
    """Another run for the same config holds the lock."""

    def __init__(self, config_id):
        super().__init__(f"A scraping run for config {config_id} is already in progress")
        self.config_id = config_id


def _lock_key(config_id) -> str:
    return f"scraping:run-lock:{config_id}"


@contextmanager
def run_lock(config_id, timeout: int = 1800):
    """
    Hold the run lock for config_id for the duration of the block.

    cache.add is atomic on shared backends, so only one caller gets the lock.
    The timeout frees a lock left behind by a crashed worker.

    Raises:
        RunInProgress: if the lock is already held
    """
    key = _lock_key(config_id)
    if not cache.add(key, 1, timeout=timeout):
        logger.info(f"Run lock busy for config {config_id}")
        raise RunInProgress(config_id)
    try:
        yield
    finally:
        cache.delete(key)


def is_locked(config_id) -> bool:
    return cache.get(_lock_key(config_id)) is not None
