"""
Page fetching and the scraper error taxonomy.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import requests
from bs4 import BeautifulSoup

from core.user_agent_manager import user_agent_manager
from .config import CrawlSettings

logger = logging.getLogger(__name__)


class ScraperException(Exception):
    """Base exception for scraper errors."""
    pass


class FetchFailed(ScraperException):
    """Network error, HTTP error or timeout while fetching a page."""

    def __init__(self, message: str, url: str = '', status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SourceBlocked(FetchFailed):
    """The source refused the request (403) or rate limited us (429)."""
    pass


class InsufficientContent(ScraperException):
    """The page was fetched but carries too little text to extract from."""

    def __init__(self, message: str, length: int = 0):
        super().__init__(message)
        self.length = length


class ServiceUnavailable(ScraperException):
    """The AI extraction backend is not configured or not reachable."""
    pass


class UnparsableResponse(ScraperException):
    """The AI extraction backend replied with something that is not the expected JSON."""

    def __init__(self, message: str, raw_content: Optional[str] = None):
        super().__init__(message)
        self.raw_content = raw_content


class ExtractionFailed(ScraperException):
    """No resolvable price. The partial draft is kept for diagnostics."""

    def __init__(self, message: str, draft=None):
        super().__init__(message)
        self.draft = draft


class DuplicateExternalId(ScraperException):
    """The external id is already staged or already in the catalog."""

    def __init__(self, external_id: str):
        super().__init__(f"Property {external_id} was already imported or staged")
        self.external_id = external_id


class InvalidImage(ScraperException):
    """Upload or screenshot that is not an image or is too large."""
    pass


@dataclass
class FetchedPage:
    url: str
    content: str
    content_type: str  # 'html' or 'markdown'
    screenshot: Optional[str] = None

    def __len__(self):
        return len(self.content)


class PageFetcher:
    """
    Fetches pages either through the rendering service (waits for
    script-populated content) or directly over HTTP.

    Every request has a hard timeout. Retries are off by default; a failed
    fetch is reported to the caller, which decides whether to skip.
    """

    def __init__(self, crawl_settings: Optional[CrawlSettings] = None):
        self.settings = crawl_settings or CrawlSettings.from_django()
        self.max_retries = self.settings.max_retries
        self.retry_delay = max(self.settings.request_delay, 1.0)

    def _get_headers(self) -> Dict[str, str]:
        """Get browser-like headers with a rotated user agent."""
        return {
            'User-Agent': user_agent_manager.get_random_user_agent(),
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
            'Accept-Language': 'pt-BR,pt;q=0.9,en;q=0.5',
            'Accept-Encoding': 'gzip, deflate',
            'Connection': 'close',
            'Upgrade-Insecure-Requests': '1',
        }

    def _request(
        self,
        url: str,
        method: str,
        timeout: float,
        json_data: Optional[Dict] = None,
        headers: Optional[Dict] = None,
        retry_count: int = 0,
    ) -> requests.Response:
        """
        Make one HTTP request, retrying up to max_retries times.

        Raises:
            SourceBlocked: on 403/429
            FetchFailed: on any other HTTP error, network error or timeout
        """
        if retry_count > 0:
            time.sleep(self.retry_delay * retry_count)

        try:
            response = requests.request(
                method=method,
                url=url,
                json=json_data,
                headers=headers or self._get_headers(),
                timeout=timeout,
            )

            if response.status_code in (403, 429):
                raise SourceBlocked(
                    f"Request blocked ({response.status_code})", url=url, status_code=response.status_code
                )

            response.raise_for_status()
            return response

        except (requests.exceptions.RequestException, SourceBlocked) as e:
            if retry_count < self.max_retries:
                logger.warning(f"Request failed (attempt {retry_count + 1}/{self.max_retries}): {e}")
                return self._request(url, method, timeout, json_data, headers, retry_count + 1)

            if isinstance(e, SourceBlocked):
                raise
            if isinstance(e, requests.exceptions.Timeout):
                raise FetchFailed(f"Timed out after {timeout}s fetching {url}", url=url) from e
            status_code = getattr(getattr(e, 'response', None), 'status_code', None)
            raise FetchFailed(f"Failed to fetch {url}: {e}", url=url, status_code=status_code) from e

    def _render(self, url: str, content_format: str, timeout: float, wait_ms: int,
                only_main_content: bool) -> FetchedPage:
        payload = {
            'url': url,
            'formats': [content_format],
            'waitFor': wait_ms,
            'onlyMainContent': only_main_content,
        }
        headers = {
            'Authorization': f"Bearer {self.settings.render_api_key}",
            'Content-Type': 'application/json',
        }
        response = self._request(self.settings.render_url, 'POST', timeout, json_data=payload, headers=headers)

        try:
            body: Dict[str, Any] = response.json()
        except ValueError as e:
            raise FetchFailed(f"Rendering service returned invalid JSON for {url}", url=url) from e

        if body.get('success') is False:
            raise FetchFailed(f"Rendering service could not fetch {url}: {body.get('error', 'unknown error')}", url=url)

        data = body.get('data') or body
        return FetchedPage(
            url=url,
            content=data.get(content_format) or '',
            content_type=content_format,
            screenshot=data.get('screenshot'),
        )

    def fetch_html(self, url: str, timeout: Optional[float] = None) -> FetchedPage:
        """Fetch the full HTML of a listing or detail page."""
        timeout = timeout or self.settings.detail_timeout
        if self.settings.uses_render_service:
            return self._render(url, 'html', timeout, self.settings.render_wait_ms, only_main_content=False)

        response = self._request(url, 'GET', timeout)
        return FetchedPage(url=url, content=response.text, content_type='html')

    def fetch_document(self, url: str, timeout: Optional[float] = None) -> FetchedPage:
        """
        Fetch an arbitrary page for single-listing import.

        Markdown when the rendering service is available, raw HTML otherwise.
        """
        timeout = timeout or self.settings.import_timeout
        if self.settings.uses_render_service:
            return self._render(url, 'markdown', timeout, self.settings.import_render_wait_ms, only_main_content=True)

        response = self._request(url, 'GET', timeout)
        return FetchedPage(url=url, content=response.text, content_type='html')


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, 'lxml')
