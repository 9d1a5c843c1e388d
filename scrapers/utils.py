"""
Utility functions for parsing auction listing pages and imported documents.
"""

import re
import hashlib
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Tuple, Iterable
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_IMAGES = 10

# Substrings that mark site chrome rather than property photos
IMAGE_DENYLIST = (
    'logo',
    'banner',
    'placeholder',
    'watermark',
    'marca-dagua',
    'marcadagua',
    'favicon',
    'icon',
    'sprite',
    'avatar',
    'loading',
    'spinner',
    'blank.gif',
    'pixel.gif',
    'no-image',
    'sem-foto',
)

MIN_IMAGE_DIMENSION = 200

_DIMENSIONS_RE = re.compile(r'(\d{2,4})x(\d{2,4})', re.IGNORECASE)
_THOUSANDS_ONLY_RE = re.compile(r'^\d{1,3}(\.\d{3})+$')
_URL_ID_PAIR_RE = re.compile(r'-(\d{6,})-(\d+)-')
_URL_ID_RE = re.compile(r'(\d{6,})')
# City words, optionally the "-{property}-{lot}-{words}-" id block, then the state
_CITY_STATE_SLUG_RE = re.compile(
    r'em-((?:[a-z]+-)*?[a-z]+)-(?:\d[\d-]*-(?:[a-z]+-)*?)?([a-z]{2})(?=[/?#]|$)',
    re.IGNORECASE,
)

# Size variants served by the auction site's image host
_THUMBNAIL_SUFFIX_RE = re.compile(r'-(m|p)(\.(?:jpe?g|png|webp))', re.IGNORECASE)

# Words kept lower-case when a city slug is title-cased
_LOWER_WORDS = {'de', 'da', 'do', 'das', 'dos', 'e'}


def parse_brl_number(value: str) -> Optional[Decimal]:
    """
    Parse a number written with the Brazilian convention.

    "235.000,00" -> 235000.00, "1.234" -> 1234, "72,5" -> 72.5, "120" -> 120.

    Args:
        value: Number string, optionally with currency symbol or unit

    Returns:
        Decimal value or None if nothing numeric is found
    """
    if value is None:
        return None

    match = re.search(r'\d[\d.,]*', str(value))
    if not match:
        return None

    number = match.group().rstrip('.,')

    if ',' in number:
        number = number.replace('.', '').replace(',', '.')
    elif _THOUSANDS_ONLY_RE.match(number):
        number = number.replace('.', '')

    try:
        return Decimal(number)
    except InvalidOperation:
        logger.debug(f"Could not parse number from {value!r}")
        return None


def clean_number(num_str: str) -> Optional[int]:
    """
    Parse the first integer in a string like "3 quartos" or "2 vagas".

    Returns:
        Integer value or None if parsing fails
    """
    if not num_str:
        return None
    match = re.search(r'\d+', str(num_str))
    return int(match.group()) if match else None


def clean_text(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not text:
        return ""
    if '<' in text:
        text = BeautifulSoup(str(text), "html.parser").get_text(' ')
    return ' '.join(text.split())


def strip_markdown(text: str) -> str:
    """Remove the markdown markup that survives in rendered page text."""
    if not text:
        return ""
    text = re.sub(r'!\[[^\]]*\]\([^)]*\)', '', text)
    text = re.sub(r'\[([^\]]*)\]\([^)]*\)', r'\1', text)
    text = re.sub(r'[*_`#>]+', '', text)
    return ' '.join(text.split())


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip()


def normalize_url(url: str) -> str:
    """Add https:// to scheme-less URLs."""
    url = (url or '').strip()
    if url and not re.match(r'^https?://', url, re.IGNORECASE):
        url = f"https://{url.lstrip('/')}"
    return url


def stable_hash(data, length: int = 12) -> str:
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha1(data).hexdigest()[:length]


def url_path(url: str) -> str:
    """Path of a URL; the raw string when it does not parse."""
    try:
        return urlparse(url).path or url
    except ValueError:
        return url


def extract_id_from_url(url: str) -> Optional[str]:
    """
    Derive the source's stable listing id from a detail URL.

    The auction site embeds "-{property}-{lot}-" in its slugs, e.g.
    /imovel/ce/fortaleza/casa-em-fortaleza-1444412345-46789-caixa-ce/
    gives "1444412345-46789". Otherwise the longest run of 6+ digits is used.

    Returns:
        External id or None
    """
    if not url:
        return None

    path = url_path(url)

    match = _URL_ID_PAIR_RE.search(path)
    if match:
        return f"{match.group(1)}-{match.group(2)}"

    candidates = _URL_ID_RE.findall(path)
    if candidates:
        return max(candidates, key=len)

    return None


def external_id_for_url(url: str) -> str:
    """External id from the URL shape, else a hash of the normalized URL."""
    return extract_id_from_url(url) or f"url-{stable_hash(normalize_url(url))}"


def title_case_slug(slug: str) -> str:
    words = [word for word in slug.replace('_', '-').split('-') if word]
    titled = []
    for index, word in enumerate(words):
        if index > 0 and word.lower() in _LOWER_WORDS:
            titled.append(word.lower())
        else:
            titled.append(word.capitalize())
    return ' '.join(titled)


def extract_city_state_from_url(url: str) -> Tuple[str, str]:
    """
    Read city and state from the "em-{city-slug}-{uf}" URL segment.

    Returns:
        (city, STATE); empty strings when the URL has no such segment
    """
    if not url:
        return '', ''
    match = _CITY_STATE_SLUG_RE.search(url_path(url))
    if not match:
        return '', ''
    return title_case_slug(match.group(1)), match.group(2).upper()


def image_dimensions(url: str) -> Optional[Tuple[int, int]]:
    """Width and height encoded in an image filename ("foto-150x100.jpg")."""
    filename = url_path(url).rsplit('/', 1)[-1]
    match = _DIMENSIONS_RE.search(filename)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_content_image(url: str) -> bool:
    """
    False for logos, placeholders, watermarks and tiny thumbnails.
    """
    lowered = url.lower()
    if any(marker in lowered for marker in IMAGE_DENYLIST):
        return False

    dimensions = image_dimensions(url)
    if dimensions and dimensions[0] < MIN_IMAGE_DIMENSION and dimensions[1] < MIN_IMAGE_DIMENSION:
        return False

    return True


def upgrade_image_url(url: str) -> str:
    """Swap a medium/small thumbnail for the large variant."""
    return _THUMBNAIL_SUFFIX_RE.sub(r'-g\2', url)


def filter_images(urls: Iterable[str], base_url: str = '', limit: int = MAX_IMAGES,
                  upgrade: bool = False) -> List[str]:
    """
    Resolve, filter and deduplicate image URLs, keeping document order.

    Args:
        urls: Raw image references in document order
        base_url: Page URL used to resolve relative references
        limit: Maximum number of images returned
        upgrade: Replace thumbnail variants with the large variant

    Returns:
        At most `limit` absolute URLs
    """
    images = []
    seen = set()

    for raw in urls:
        if not raw:
            continue
        url = raw.strip()
        if url.startswith('data:'):
            continue
        try:
            if base_url:
                url = urljoin(base_url, url)
            urlparse(url)
        except ValueError:
            logger.debug(f"Skipping malformed image URL {raw!r}")
            continue
        if not url.startswith(('http://', 'https://')):
            continue
        if not is_content_image(url):
            continue
        if upgrade:
            url = upgrade_image_url(url)
        if url in seen:
            continue

        seen.add(url)
        images.append(url)
        if len(images) >= limit:
            break

    return images
