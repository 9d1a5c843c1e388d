"""
Image uploads for catalog properties.
"""

import os
import base64
import logging
import uuid
from typing import Optional

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from scrapers.base import InvalidImage

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
    'image/gif': '.gif',
}


class ImageStore:
    """
    put(file) -> url, images only, size-capped.

    Files go to Django's default storage. If the storage backend fails the
    image is returned inline as a data: URL so the caller still has a
    usable (if ephemeral) reference.
    """

    def __init__(self, storage=None, max_bytes: Optional[int] = None, prefix: Optional[str] = None):
        upload_settings = getattr(settings, 'UPLOAD_SETTINGS', {})
        self.storage = storage or default_storage
        self.max_bytes = max_bytes or upload_settings.get('MAX_IMAGE_BYTES', 5 * 1024 * 1024)
        self.prefix = prefix if prefix is not None else upload_settings.get('IMAGE_PREFIX', 'property-images/')

    def validate(self, uploaded) -> bytes:
        content_type = getattr(uploaded, 'content_type', '') or ''
        if not content_type.startswith('image/'):
            raise InvalidImage("Only image files are accepted")
        if uploaded.size > self.max_bytes:
            raise InvalidImage(f"Image is larger than {self.max_bytes // (1024 * 1024)}MB")
        return uploaded.read()

    def put(self, uploaded) -> dict:
        """
        Store an uploaded image.

        Returns:
            {'url': ..., 'stored': bool}; stored is False for the inline fallback
        """
        data = self.validate(uploaded)
        content_type = uploaded.content_type
        extension = ALLOWED_EXTENSIONS.get(content_type) or os.path.splitext(uploaded.name or '')[1] or '.img'
        name = f"{self.prefix}{uuid.uuid4().hex}{extension}"

        try:
            saved_name = self.storage.save(name, ContentFile(data))
            url = self.storage.url(saved_name)
        except Exception as e:
            logger.warning(f"Image storage unavailable, returning inline image: {e}")
            encoded = base64.b64encode(data).decode('ascii')
            return {'url': f"data:{content_type};base64,{encoded}", 'stored': False}

        logger.info(f"Stored image {saved_name}")
        return {'url': url, 'stored': True}


image_store = ImageStore()
