"""
Crawl runs: the synchronous entry point and its Celery task.
"""

import logging
from typing import Iterable, List, Optional

from celery import shared_task

from core.locks import run_lock
from scrapers.config import CrawlSettings
from scrapers.listing_scraper import CrawlResult, ListingCrawler
from .staging import ConfigNotFound
from .store import PropertyStore, property_store

logger = logging.getLogger(__name__)


def resolve_states(requested: Optional[Iterable[str]], config_states: Optional[Iterable[str]],
                   default_states: Iterable[str]) -> List[str]:
    """Explicit states, else the config's, else the defaults; upper-cased."""
    for candidate in (requested, config_states, default_states):
        states = [state.strip().upper() for state in (candidate or []) if state and state.strip()]
        if states:
            return states
    return []


def execute_crawl(config_id, states: Optional[List[str]] = None, url: Optional[str] = None,
                  store: Optional[PropertyStore] = None, crawl_settings: Optional[CrawlSettings] = None,
                  crawler: Optional[ListingCrawler] = None) -> CrawlResult:
    """
    Run one crawl for a scraping config, holding the config's run lock.

    Args:
        config_id: ScrapingConfig id
        states: State filter; falls back to the config's, then the defaults
        url: Manual URL; when given, crawls from this page instead of the seeds

    Raises:
        ConfigNotFound: unknown config (nothing is logged)
        RunInProgress: another run for this config holds the lock
    """
    store = store or property_store
    config = store.get_config(config_id)
    if config is None:
        raise ConfigNotFound(config_id)

    crawl_settings = crawl_settings or CrawlSettings.from_django()
    states = resolve_states(states, config.states, crawl_settings.default_states)
    crawler = crawler or ListingCrawler(store, crawl_settings=crawl_settings)

    with run_lock(config_id, timeout=crawl_settings.run_lock_timeout):
        logger.info(f"Crawl for config {config_id} ({config.name}), states={','.join(states)}, url={url or '-'}")
        try:
            if url:
                result = crawler.crawl_url(config_id, url, states=states)
            else:
                result = crawler.crawl(config_id, seeds=config.seed_urls or None, states=states)
        finally:
            store.touch_config(config_id)

    return result


@shared_task(bind=True)
def run_scraping(self, config_id: int, states: Optional[List[str]] = None, url: Optional[str] = None):
    """
    Async crawl run. Not retried: a failed run is already logged as failed.

    Returns:
        CrawlResult as a dict
    """
    logger.info(f"Task {self.request.id}: starting crawl for config {config_id}")
    result = execute_crawl(config_id, states=states, url=url)
    logger.info(f"Task {self.request.id}: run {result.run_id} {result.status}")
    return result.to_dict()
