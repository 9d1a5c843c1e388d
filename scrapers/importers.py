"""
Single-listing import adapters: from an arbitrary URL or from a screenshot.
"""

import re
import base64
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .base import (
    DuplicateExternalId,
    ExtractionFailed,
    InsufficientContent,
    InvalidImage,
    PageFetcher,
)
from .config import CrawlSettings
from .drafts import PropertyDraft
from .extractor import Document, FieldExtractor
from .utils import extract_id_from_url, external_id_for_url, normalize_url, stable_hash
from .vision import VisionExtractionClient

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 2000
MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024

_DATA_URL_RE = re.compile(r'^data:(image/[\w.+-]+);base64,(.+)$', re.DOTALL)


@dataclass
class ImportResult:
    draft: PropertyDraft
    method: str  # 'heuristic', 'ai_document' or 'ai_image'
    content_preview: str = ''
    staging_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'data': self.draft.to_dict(),
            'method': self.method,
            'staging_id': self.staging_id,
        }
        if self.content_preview:
            data['raw_content'] = self.content_preview
        data.update(self.extra)
        return data


def stage_draft(store, draft: PropertyDraft) -> int:
    """
    Stage one draft unless its external id is already known.

    Raises:
        DuplicateExternalId: if staged or promoted already
    """
    if store.find_by_external_ids([draft.external_id]):
        logger.info(f"Not staging {draft.external_id}: already known")
        raise DuplicateExternalId(draft.external_id)
    return store.insert_staging(draft)


class UrlImporter:
    """
    Imports one listing from any URL.

    Heuristic extraction runs first; when it cannot find a price and the AI
    service is configured, the page text is sent to the service instead.
    """

    def __init__(self, fetcher: Optional[PageFetcher] = None, extractor: Optional[FieldExtractor] = None,
                 vision: Optional[VisionExtractionClient] = None, crawl_settings: Optional[CrawlSettings] = None):
        self.settings = crawl_settings or CrawlSettings.from_django()
        self.fetcher = fetcher or PageFetcher(self.settings)
        self.extractor = extractor or FieldExtractor()
        self.vision = vision or VisionExtractionClient(self.settings)

    def import_url(self, url: str, store=None) -> ImportResult:
        """
        Fetch and extract a single listing.

        Args:
            url: Listing URL; scheme-less URLs get https://
            store: When given, the draft is staged through the dedup gate

        Raises:
            FetchFailed: page could not be fetched
            InsufficientContent: page text below the minimum length
            ExtractionFailed: no price found (and no AI fallback succeeded)
            DuplicateExternalId: staging requested for a known listing
        """
        url = normalize_url(url)
        logger.info(f"Importing property from {url}")

        page = self.fetcher.fetch_document(url)
        content = page.content or ''
        if len(content.strip()) < self.settings.min_import_content_length:
            raise InsufficientContent(
                f"Page returned too little content ({len(content.strip())} chars); it may be blocked or empty",
                length=len(content.strip()),
            )

        if page.content_type == 'markdown':
            doc = Document.from_markdown(content, url)
        else:
            doc = Document.from_html(content, url)

        external_id = external_id_for_url(url)
        method = 'heuristic'
        try:
            draft = self.extractor.extract(doc, external_id, source_url=url)
        except ExtractionFailed:
            if not self.vision.configured:
                raise
            logger.info(f"Heuristics found no price on {url}, asking the AI service")
            payload = self.vision.extract_from_document(doc.text, source_url=url)
            draft = self.extractor.extract_from_json(payload, external_id, source_url=url)
            method = 'ai_document'

        result = ImportResult(draft=draft, method=method, content_preview=content[:PREVIEW_LENGTH])
        if store is not None:
            result.staging_id = stage_draft(store, draft)
        return result


def decode_image(image: Any, content_type: str = '', max_bytes: int = MAX_SCREENSHOT_BYTES):
    """
    Accept a data URL string or raw bytes.

    Returns:
        (bytes, content_type, data_url)

    Raises:
        InvalidImage: not an image, not decodable, or larger than max_bytes
    """
    if isinstance(image, str):
        match = _DATA_URL_RE.match(image.strip())
        if not match:
            raise InvalidImage("Screenshot must be a base64 data:image URL")
        content_type = match.group(1)
        try:
            data = base64.b64decode(match.group(2), validate=False)
        except (ValueError, TypeError) as e:
            raise InvalidImage("Screenshot data URL is not valid base64") from e
    elif isinstance(image, (bytes, bytearray)):
        data = bytes(image)
    else:
        raise InvalidImage("Screenshot is required")

    if not content_type.startswith('image/'):
        raise InvalidImage(f"Only images are accepted (got {content_type or 'unknown type'})")
    if not data:
        raise InvalidImage("Screenshot is empty")
    if len(data) > max_bytes:
        raise InvalidImage(f"Image is larger than {max_bytes // (1024 * 1024)}MB")

    data_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
    return data, content_type, data_url


class ScreenshotImporter:
    """Imports one listing from a screenshot through the vision service."""

    def __init__(self, vision: Optional[VisionExtractionClient] = None, extractor: Optional[FieldExtractor] = None,
                 crawl_settings: Optional[CrawlSettings] = None, max_bytes: int = MAX_SCREENSHOT_BYTES):
        self.settings = crawl_settings or CrawlSettings.from_django()
        self.vision = vision or VisionExtractionClient(self.settings)
        self.extractor = extractor or FieldExtractor()
        self.max_bytes = max_bytes

    def import_screenshot(self, image: Any, content_type: str = '', source_url: str = '',
                          store=None) -> ImportResult:
        """
        Extract a listing from a screenshot.

        Args:
            image: data:image URL or raw image bytes
            content_type: MIME type when raw bytes are given
            source_url: Listing URL, if known
            store: When given, the draft is staged through the dedup gate

        Raises:
            InvalidImage: bad input
            ServiceUnavailable: AI service not configured or failing
            UnparsableResponse: AI reply is not a JSON object
            ExtractionFailed: AI reply has no price
        """
        data, content_type, data_url = decode_image(image, content_type, self.max_bytes)
        source_url = normalize_url(source_url) if source_url else ''

        external_id = extract_id_from_url(source_url) if source_url else None
        external_id = external_id or f"shot-{stable_hash(data)}"

        payload = self.vision.extract_from_image(data_url, source_url=source_url)
        draft = self.extractor.extract_from_json(payload, external_id, source_url=source_url)

        result = ImportResult(draft=draft, method='ai_image')
        if store is not None:
            result.staging_id = stage_draft(store, draft)
        return result


url_importer = UrlImporter()
screenshot_importer = ScreenshotImporter()
