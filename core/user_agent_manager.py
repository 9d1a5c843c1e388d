"""
User-agent rotation for direct (non-rendered) page fetches.
"""

import random
import logging
from typing import Optional, List

from django.conf import settings

logger = logging.getLogger(__name__)

FALLBACK_USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15',
]


class UserAgentManager:
    """
    Picks a user agent per request.

    Order of preference: agents listed in SCRAPER_SETTINGS['USER_AGENTS'],
    then fake-useragent, then the fallback list above.
    """

    def __init__(self, user_agents: Optional[List[str]] = None):
        if user_agents is None:
            user_agents = getattr(settings, 'SCRAPER_SETTINGS', {}).get('USER_AGENTS', [])
        self.user_agents = [ua for ua in user_agents if ua]
        self._fake_ua = None
        self._fake_ua_loaded = False

    def _load_fake_useragent(self):
        # Loaded lazily: fake-useragent reads its browser database on first use
        self._fake_ua_loaded = True
        try:
            from fake_useragent import UserAgent
            self._fake_ua = UserAgent(browsers=['Chrome', 'Firefox', 'Safari', 'Edge'])
        except Exception as e:
            logger.warning(f"fake-useragent unavailable, using fallback agents: {e}")
            self._fake_ua = None

    def get_random_user_agent(self) -> str:
        if self.user_agents:
            return random.choice(self.user_agents)

        if not self._fake_ua_loaded:
            self._load_fake_useragent()

        if self._fake_ua is not None:
            try:
                return self._fake_ua.random
            except Exception as e:
                logger.debug(f"fake-useragent failed: {e}")

        return random.choice(FALLBACK_USER_AGENTS)


user_agent_manager = UserAgentManager()
