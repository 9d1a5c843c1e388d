"""
Client for the AI extraction service (OpenAI-compatible chat completions).

Used for screenshot imports and as the fallback for URL imports whose page
the heuristics cannot read. Replies are JSON objects in the contract below;
the caller still validates every field.
"""

import re
import json
import logging
from typing import Dict, Any, Optional

import openai

from .base import ServiceUnavailable, UnparsableResponse
from .config import CrawlSettings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    'Você é um extrator de dados de anúncios imobiliários no Brasil. '
    'Devolva APENAS um JSON válido com os campos solicitados. '
    'Se algum campo não aparecer, use string vazia "" para textos e números, '
    'false para booleanos e [] para arrays. '
    'price e original_price devem ser numéricos em string, sem símbolos e sem separadores (ex: 68585). '
    'type deve ser um destes: casa, apartamento, terreno, comercial. '
    'address_state deve ser sigla (ex: CE, PB, RN). '
    'address_zipcode no formato 00000-000, discount como percentual inteiro (ex: 24) '
    'e auction_date no formato AAAA-MM-DD.'
)

RESPONSE_TEMPLATE = {
    'title': '',
    'type': 'casa',
    'price': '',
    'original_price': '',
    'discount': '',
    'address_street': '',
    'address_neighborhood': '',
    'address_city': '',
    'address_state': '',
    'address_zipcode': '',
    'bedrooms': '',
    'bathrooms': '',
    'area': '',
    'parking_spaces': '',
    'description': '',
    'images': [],
    'accepts_fgts': False,
    'accepts_financing': False,
    'modality': '',
    'auction_date': '',
    'source_url': '',
}

MAX_DOCUMENT_CHARS = 30000


class VisionExtractionClient:
    """
    Asks a vision-capable chat model for a property JSON object.

    Raises ServiceUnavailable when no key is configured or the API call
    fails, UnparsableResponse when the reply is not a JSON object.
    """

    def __init__(self, crawl_settings: Optional[CrawlSettings] = None, client=None):
        self.settings = crawl_settings or CrawlSettings.from_django()
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self.settings.ai_configured

    @property
    def client(self):
        if self._client is None:
            if not self.settings.ai_configured:
                raise ServiceUnavailable("AI extraction service is not configured (AI_API_KEY)")
            self._client = openai.OpenAI(
                api_key=self.settings.ai_api_key,
                base_url=self.settings.ai_base_url,
                timeout=self.settings.ai_timeout,
                max_retries=0,
            )
        return self._client

    def _template(self, source_url: str) -> str:
        return json.dumps(dict(RESPONSE_TEMPLATE, source_url=source_url or ''), ensure_ascii=False)

    def _complete(self, user_content) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=self.settings.ai_model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
            )
        except openai.APIError as e:
            logger.error(f"AI extraction request failed: {e}")
            raise ServiceUnavailable(f"AI extraction service error: {e}") from e

        try:
            raw = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise UnparsableResponse("AI extraction service returned no choices") from e

        return self._parse_json_response(raw)

    def _parse_json_response(self, raw: Optional[str]) -> Dict[str, Any]:
        if not isinstance(raw, str) or not raw.strip():
            raise UnparsableResponse("AI extraction service returned an empty reply", raw_content=raw)

        content = raw.strip()
        fenced = re.search(r'```(?:json)?\s*(.*?)```', content, re.DOTALL)
        if fenced:
            content = fenced.group(1).strip()

        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            match = re.search(r'\{.*\}', content, re.DOTALL)
            if not match:
                raise UnparsableResponse("AI reply is not JSON", raw_content=raw)
            try:
                data = json.loads(match.group(0))
            except json.JSONDecodeError as e:
                raise UnparsableResponse(f"AI reply is not JSON: {e}", raw_content=raw) from e

        if not isinstance(data, dict):
            raise UnparsableResponse("AI reply is not a JSON object", raw_content=raw)
        return data

    def extract_from_image(self, image_data_url: str, source_url: str = '') -> Dict[str, Any]:
        """
        Extract listing fields from a screenshot.

        Args:
            image_data_url: data:image/...;base64 URL of the screenshot
            source_url: Listing URL, echoed back in the reply

        Returns:
            Parsed JSON object (not yet validated)
        """
        logger.info("Requesting screenshot extraction")
        return self._complete([
            {
                "type": "text",
                "text": (
                    'Extraia os dados do anúncio neste screenshot e retorne somente JSON. '
                    'Use este formato exato (mesmas chaves):\n' + self._template(source_url)
                ),
            },
            {"type": "image_url", "image_url": {"url": image_data_url}},
        ])

    def extract_from_document(self, text: str, source_url: str = '') -> Dict[str, Any]:
        """Extract listing fields from page text or markdown."""
        logger.info(f"Requesting document extraction for {source_url or 'inline text'}")
        return self._complete(
            'Extraia os dados do anúncio neste conteúdo e retorne somente JSON. '
            'Use este formato exato (mesmas chaves):\n' + self._template(source_url)
            + '\n\nConteúdo:\n' + text[:MAX_DOCUMENT_CHARS]
        )
