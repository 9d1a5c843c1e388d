"""
Crawl controller for the auction site's paginated listing pages.

Collects detail links from each seed's result pages, drops candidates
outside the requested states or already known, then extracts and stages
the remaining ones in small concurrent batches.
"""

import re
import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Optional, Dict, List, Iterable, Tuple, Callable, Any
from urllib.parse import urljoin, urldefrag

from core.throttle import Pacer
from .base import ExtractionFailed, FetchFailed, PageFetcher, ScraperException, make_soup
from .config import CrawlSettings
from .dedup import DeduplicationIndex
from .drafts import CandidateLink, PropertyDraft
from .extractor import Document, FieldExtractor
from .utils import extract_city_state_from_url, extract_id_from_url, external_id_for_url, normalize_url

logger = logging.getLogger(__name__)

# Markers of the site's own error pages, served with status 200
ERROR_PAGE_MARKERS = ('500-errointernodeservidor', '404-naoencontrado')

_NEXT_TEXT_RE = re.compile(r'\bpr[óo]xima\b', re.IGNORECASE)


class RunAborted(ScraperException):
    """A run-level failure: the run is logged as failed."""
    pass


class SourceUnreachable(RunAborted):
    """No page of any seed (or the manual URL) could be fetched."""
    pass


class UnrecognizedPage(RunAborted):
    """A manual URL is neither a listing index nor an extractable detail page."""
    pass


def in_states(link: CandidateLink, wanted) -> bool:
    """State filter; links whose URL carries no state are kept."""
    return wanted is None or not link.state or link.state in wanted


@dataclass
class CrawlResult:
    run_id: Any
    status: str
    found: int = 0
    new: int = 0
    outcome: str = 'crawl'  # 'crawl', 'index', 'detail' or 'unrecognized'
    failed: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunProgress:
    """Counts of the run in flight, kept for the failure log."""
    found: int = 0
    new: int = 0


class ListingCrawler:
    """
    Crawls seed listing pages and stages unseen properties.

    Args:
        store: Persistence adapter (find_by_external_ids, insert_staging,
            log_run_start, log_run_finish)
        fetcher: Page fetcher
        extractor: Field extractor for detail pages
        crawl_settings: Limits, delays and timeouts
        pacer: Inter-request delay; built from crawl_settings when omitted
    """

    def __init__(self, store, fetcher: Optional[PageFetcher] = None, extractor: Optional[FieldExtractor] = None,
                 crawl_settings: Optional[CrawlSettings] = None, pacer: Optional[Pacer] = None):
        self.store = store
        self.settings = crawl_settings or CrawlSettings.from_django()
        self.fetcher = fetcher or PageFetcher(self.settings)
        self.extractor = extractor or FieldExtractor(upgrade_thumbnails=True)
        self.pacer = pacer or Pacer(self.settings.request_delay)
        self.detail_url_re = re.compile(self.settings.detail_url_pattern, re.IGNORECASE)
        self.progress = RunProgress()

    # ========================================================================
    # Listing pages
    # ========================================================================

    @staticmethod
    def page_url(seed: str, page: int) -> str:
        if page <= 1:
            return seed
        separator = '&' if '?' in seed else '?'
        return f"{seed}{separator}pag={page}"

    def is_error_page(self, html: str) -> bool:
        if len(html) < self.settings.min_listing_html_length:
            return True
        return any(marker in html for marker in ERROR_PAGE_MARKERS)

    def parse_listing_page(self, html: str, page_url: str, page: int = 1) -> Tuple[List[CandidateLink], bool]:
        """
        Extract detail links from a listing page.

        Returns:
            (links unique by external id in page order, next-page indicator present)
        """
        soup = make_soup(html)
        links: Dict[str, CandidateLink] = OrderedDict()

        for anchor in soup.find_all('a', href=True):
            try:
                url, _ = urldefrag(urljoin(page_url, anchor['href'].strip()))
            except ValueError:
                continue
            if not self.detail_url_re.search(url):
                continue
            external_id = extract_id_from_url(url)
            if not external_id or external_id in links:
                continue
            city, state = extract_city_state_from_url(url)
            links[external_id] = CandidateLink(url=url, external_id=external_id, city=city, state=state)

        has_next = (
            f"pag={page + 1}" in html
            or soup.find(['a', 'link'], rel='next') is not None
            or any(_NEXT_TEXT_RE.search(a.get_text(' ')) for a in soup.find_all('a'))
        )
        return list(links.values()), has_next

    def collect_links(self, seeds: Iterable[str], states: Optional[Iterable[str]] = None):
        """
        Walk every seed's pages and collect candidate links.

        A seed stops on max_pages, on max_consecutive_empty_pages empty or
        failed pages in a row, or on a short page without a next-page
        indicator. Candidates outside `states` are dropped here, before any
        detail page is fetched.

        Returns:
            (OrderedDict external_id -> CandidateLink, number of pages fetched)
        """
        wanted = {state.upper() for state in states} if states else None
        candidates: Dict[str, CandidateLink] = OrderedDict()
        pages_fetched = 0

        for seed in seeds:
            consecutive_empty = 0

            for page in range(1, self.settings.max_pages + 1):
                url = self.page_url(seed, page)
                self.pacer.wait()

                try:
                    fetched = self.fetcher.fetch_html(url, timeout=self.settings.listing_timeout)
                except FetchFailed as e:
                    logger.warning(f"Listing page failed {url}: {e}")
                    consecutive_empty += 1
                    if consecutive_empty >= self.settings.max_consecutive_empty_pages:
                        break
                    continue

                pages_fetched += 1
                html = fetched.content or ''
                links, has_next = ([], False) if self.is_error_page(html) else self.parse_listing_page(html, url, page)

                if not links:
                    consecutive_empty += 1
                    logger.info(f"No listings on {url} ({consecutive_empty} empty in a row)")
                    if consecutive_empty >= self.settings.max_consecutive_empty_pages:
                        break
                    continue

                consecutive_empty = 0
                kept = 0
                for link in links:
                    if not in_states(link, wanted):
                        continue
                    if link.external_id not in candidates:
                        candidates[link.external_id] = link
                        kept += 1

                logger.info(f"Page {page} of {seed}: {len(links)} links, {kept} new candidates")

                if len(links) < self.settings.last_page_threshold and not has_next:
                    logger.info(f"Last page reached for {seed} at page {page}")
                    break

        return candidates, pages_fetched

    # ========================================================================
    # Detail pages
    # ========================================================================

    def extract_detail(self, link: CandidateLink) -> Optional[PropertyDraft]:
        """Fetch and extract one detail page; None on any per-item failure."""
        try:
            page = self.fetcher.fetch_html(link.url, timeout=self.settings.detail_timeout)
        except FetchFailed as e:
            logger.warning(f"Detail page failed {link.url}: {e}")
            return None

        if len(page.content or '') < self.settings.min_detail_html_length:
            logger.warning(f"Detail page too short, skipping {link.url}")
            return None

        try:
            return self.extractor.extract(
                Document.from_html(page.content, link.url),
                link.external_id,
                source_url=link.url,
                hints={'city': link.city, 'state': link.state},
            )
        except ExtractionFailed as e:
            logger.warning(f"Skipping {link.url}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error extracting {link.url}: {e}", exc_info=True)
            return None

    def stage_candidates(self, candidates: List[CandidateLink], index: DeduplicationIndex) -> Tuple[int, int]:
        """
        Extract and stage candidates in concurrent batches.

        Fetches run on worker threads; drafts are written from this thread
        once each batch completes.

        Returns:
            (drafts staged, candidates that failed)
        """
        batch = candidates[:self.settings.max_detail_batch]
        if len(candidates) > len(batch):
            logger.info(f"Processing {len(batch)} of {len(candidates)} new candidates this run")

        size = max(1, self.settings.detail_concurrency)
        staged = 0
        failed = 0

        with ThreadPoolExecutor(max_workers=size) as executor:
            for start in range(0, len(batch), size):
                chunk = batch[start:start + size]
                self.pacer.wait()

                for link, draft in zip(chunk, executor.map(self.extract_detail, chunk)):
                    if draft is None:
                        failed += 1
                        continue
                    if index.is_known(draft.external_id):
                        continue
                    try:
                        self.store.insert_staging(draft)
                    except Exception as e:
                        logger.error(f"Could not stage {draft.external_id}: {e}")
                        failed += 1
                        continue
                    index.add(draft.external_id)
                    staged += 1
                    self.progress.new += 1

        return staged, failed

    # ========================================================================
    # Runs
    # ========================================================================

    def _run(self, config_id, body: Callable[[], CrawlResult]) -> CrawlResult:
        run_id = self.store.log_run_start(config_id)
        self.progress = RunProgress()
        logger.info(f"Scraping run {run_id} started for config {config_id}")

        try:
            result = body()
        except RunAborted as e:
            logger.error(f"Scraping run {run_id} failed: {e}")
            progress = self.progress
            self.store.log_run_finish(run_id, 'failed', progress.found, progress.new, str(e))
            outcome = 'unrecognized' if isinstance(e, UnrecognizedPage) else 'crawl'
            return CrawlResult(run_id=run_id, status='failed', found=progress.found, new=progress.new,
                               outcome=outcome, error_message=str(e))
        except Exception as e:
            logger.error(f"Scraping run {run_id} crashed: {e}")
            # Drafts staged before the crash stay staged; the log must agree
            self.store.log_run_finish(run_id, 'failed', self.progress.found, self.progress.new,
                                      f"Unexpected error: {e}")
            raise

        result.run_id = run_id
        self.store.log_run_finish(run_id, 'completed', result.found, result.new)
        logger.info(f"Scraping run {run_id} completed: {result.found} found, {result.new} new")
        return result

    def _stage_links(self, links: Iterable[CandidateLink], outcome: str) -> CrawlResult:
        links = list(links)
        self.progress.found = len(links)
        index = DeduplicationIndex.load(self.store, [link.external_id for link in links])
        fresh = index.filter_new(links)
        new, failed = self.stage_candidates(fresh, index)
        return CrawlResult(run_id=None, status='completed', found=len(links), new=new,
                           outcome=outcome, failed=failed)

    def crawl(self, config_id, seeds: Optional[List[str]] = None,
              states: Optional[Iterable[str]] = None) -> CrawlResult:
        """
        Run a full crawl over the seed listing pages.

        Args:
            config_id: ScrapingConfig the run is logged against
            seeds: Seed URLs; defaults to the configured seeds
            states: Two-letter state codes to keep; None keeps all
        """
        seeds = seeds or self.settings.seed_urls

        def body():
            candidates, pages_fetched = self.collect_links(seeds, states)
            if pages_fetched == 0:
                raise SourceUnreachable(f"Could not fetch any listing page from {len(seeds)} seed(s)")
            return self._stage_links(candidates.values(), 'crawl')

        return self._run(config_id, body)

    def crawl_url(self, config_id, url: str, states: Optional[Iterable[str]] = None) -> CrawlResult:
        """
        Run the pipeline from one caller-supplied URL.

        A detail-shaped URL is extracted directly. Any other page with
        detail links is treated as a listing index. Otherwise direct
        extraction is attempted, and the run fails as unrecognized when it
        finds no price.
        """
        url = normalize_url(url)
        wanted = {state.upper() for state in states} if states else None

        def body():
            try:
                page = self.fetcher.fetch_html(url, timeout=self.settings.listing_timeout)
            except FetchFailed as e:
                raise SourceUnreachable(f"Could not fetch {url}: {e}") from e

            html = page.content or ''
            is_detail_url = bool(self.detail_url_re.search(url))

            if not is_detail_url:
                links, _ = self.parse_listing_page(html, url)
                if links:
                    kept = [link for link in links if in_states(link, wanted)]
                    logger.info(f"{url} is a listing index: {len(links)} links, {len(kept)} in target states")
                    return self._stage_links(kept, 'index')

            return self._stage_single_page(url, html)

        return self._run(config_id, body)

    def _stage_single_page(self, url: str, html: str) -> CrawlResult:
        external_id = external_id_for_url(url)
        city, state = extract_city_state_from_url(url)

        try:
            draft = self.extractor.extract(
                Document.from_html(html, url), external_id, source_url=url,
                hints={'city': city, 'state': state},
            )
        except ExtractionFailed as e:
            raise UnrecognizedPage(f"{url} is neither a listing index nor a property page with a price") from e

        self.progress.found = 1
        index = DeduplicationIndex.load(self.store, [draft.external_id])
        if index.is_known(draft.external_id):
            logger.info(f"{draft.external_id} already known, nothing to stage")
            return CrawlResult(run_id=None, status='completed', found=1, new=0, outcome='detail')

        self.store.insert_staging(draft)
        return CrawlResult(run_id=None, status='completed', found=1, new=1, outcome='detail')
