"""
Scraper pipeline configuration.

CrawlSettings is built once from Django's SCRAPER_SETTINGS and passed to the
fetcher, crawler and import adapters, so tests can construct their own.
"""

from dataclasses import dataclass, field, fields
from typing import Dict, Any, List, Optional

from django.conf import settings


@dataclass(frozen=True)
class CrawlSettings:
    seed_urls: List[str] = field(default_factory=list)
    detail_url_pattern: str = r'^https?://(?:www\.)?leilaoimovel\.com\.br/imovel/'
    default_states: List[str] = field(default_factory=list)
    max_pages: int = 15
    max_consecutive_empty_pages: int = 2
    last_page_threshold: int = 8
    max_detail_batch: int = 25
    detail_concurrency: int = 3
    request_delay: float = 0.5
    listing_timeout: float = 45
    detail_timeout: float = 30
    import_timeout: float = 30
    max_retries: int = 0
    min_listing_html_length: int = 1000
    min_detail_html_length: int = 500
    min_import_content_length: int = 100
    render_url: str = 'https://api.firecrawl.dev/v1/scrape'
    render_api_key: str = ''
    render_wait_ms: int = 3000
    import_render_wait_ms: int = 2000
    ai_api_key: str = ''
    ai_base_url: Optional[str] = None
    ai_model: str = 'google/gemini-3-flash-preview'
    ai_timeout: float = 45
    user_agents: List[str] = field(default_factory=list)
    run_lock_timeout: int = 30 * 60

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> 'CrawlSettings':
        """Build from an upper-case settings dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = key.lower()
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_django(cls) -> 'CrawlSettings':
        return cls.from_mapping(getattr(settings, 'SCRAPER_SETTINGS', {}))

    @property
    def uses_render_service(self) -> bool:
        return bool(self.render_api_key)

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_api_key)
