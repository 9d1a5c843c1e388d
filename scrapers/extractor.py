"""
Heuristic field extraction for property listings.

Turns an HTML page, a rendered markdown document or plain text into a
PropertyDraft. Each field has a ranked rule list (see rules.py); the first
rule that yields a value wins and missing optional fields are left unset.
"""

import re
import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Dict, Any, List

from .base import ExtractionFailed, make_soup
from .drafts import (
    Address,
    PropertyDraft,
    PropertyType,
    coerce_property_type,
    compute_discount,
)
from .rules import first_match, regex_rule
from .utils import (
    clean_number,
    clean_text,
    extract_city_state_from_url,
    filter_images,
    parse_brl_number,
    strip_markdown,
    truncate,
)

logger = logging.getLogger(__name__)

PRICE_FLOOR = Decimal(10000)
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000

# Column sizes of the staging and catalog tables
MAX_STREET_LENGTH = 255
MAX_NEIGHBORHOOD_LENGTH = 120
MAX_CITY_LENGTH = 120
MAX_MODALITY_LENGTH = 100
MAX_SOURCE_URL_LENGTH = 1000

_ZIPCODE_RE = re.compile(r'^(\d{5})-?(\d{3})$')
_ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')
_BR_DATE_RE = re.compile(r'^(\d{2})/(\d{2})/(\d{4})')
MIN_PARAGRAPH_LENGTH = 50

BRAZILIAN_STATES = {
    'AC', 'AL', 'AM', 'AP', 'BA', 'CE', 'DF', 'ES', 'GO', 'MA', 'MG', 'MS', 'MT', 'PA',
    'PB', 'PE', 'PI', 'PR', 'RJ', 'RN', 'RO', 'RR', 'RS', 'SC', 'SE', 'SP', 'TO',
}

# Cities recognised without a state code next to them
KNOWN_CITIES = {
    'fortaleza': ('Fortaleza', 'CE'),
    'recife': ('Recife', 'PE'),
    'salvador': ('Salvador', 'BA'),
    'natal': ('Natal', 'RN'),
    'joão pessoa': ('João Pessoa', 'PB'),
    'joao pessoa': ('João Pessoa', 'PB'),
    'maceió': ('Maceió', 'AL'),
    'maceio': ('Maceió', 'AL'),
    'aracaju': ('Aracaju', 'SE'),
    'teresina': ('Teresina', 'PI'),
    'são luís': ('São Luís', 'MA'),
    'sao luis': ('São Luís', 'MA'),
    'caucaia': ('Caucaia', 'CE'),
    'juazeiro do norte': ('Juazeiro do Norte', 'CE'),
    'jaboatão dos guararapes': ('Jaboatão dos Guararapes', 'PE'),
    'feira de santana': ('Feira de Santana', 'BA'),
    'campina grande': ('Campina Grande', 'PB'),
    'mossoró': ('Mossoró', 'RN'),
}

# Checked in order; a later entry only applies when earlier ones did not match
TYPE_KEYWORDS = [
    (PropertyType.APARTMENT, re.compile(r'\b(apartamento|apto|cobertura|kitnet|flat)\b')),
    (PropertyType.LAND, re.compile(r'\b(terreno|lote|gleba)\b')),
    (PropertyType.COMMERCIAL, re.compile(
        r'\b(im[óo]vel comercial|sala comercial|salas comerciais|comercial|loja|galp[ãa]o|pr[ée]dio)\b'
    )),
]

# Most specific first: "Venda Direta Online" contains "Venda Direta"
MODALITIES = [
    ('Leilão SFI', re.compile(r'leil[ãa]o[\s-]+sfi')),
    ('Licitação Aberta', re.compile(r'licita[çc][ãa]o[\s-]+aberta')),
    ('Venda Direta Online', re.compile(r'venda[\s-]+(?:direta[\s-]+)?online')),
    ('Venda Direta', re.compile(r'venda[\s-]+direta')),
    ('Leilão', re.compile(r'\bleil[ãa]o\b')),
]

_FINANCING_RE = re.compile(r'financiamento|financi[áa]vel|aceita financia')
_WORDS = r"[A-ZÀ-Ú][a-zà-ú']+(?:[ \t]+(?:d[aeo]s?[ \t]+)?[A-ZÀ-Ú][a-zà-ú']+)*"


# Elements that start a new line of text; everything else (b, strong, span,
# a, td ...) flows into the surrounding line
BLOCK_TAGS = [
    'address', 'article', 'aside', 'blockquote', 'dd', 'div', 'dl', 'dt', 'figcaption',
    'figure', 'footer', 'form', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'header', 'hr', 'li',
    'main', 'nav', 'ol', 'p', 'section', 'table', 'tbody', 'thead', 'tfoot', 'title', 'tr', 'ul',
]


def block_text(soup) -> str:
    """
    Visible text with one line per block element.

    Inline children are joined with spaces, so "Valor de Venda: <b>R$ 1,00</b>"
    stays on one line.
    """
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before('\n')
        tag.insert_after('\n')

    lines = (' '.join(line.split()) for line in soup.get_text(' ').splitlines())
    return '\n'.join(line for line in lines if line)


class Document:
    """
    A fetched document in the shapes the rules need.

    Attributes:
        raw: The content as received
        kind: 'html', 'markdown' or 'text'
        text: Visible text, one block per line, markup removed
        lower: Lower-cased text
        markdown: The markdown source ('' for other kinds)
        url: Page URL, used to resolve relative links and read URL hints
    """

    def __init__(self, content: str, kind: str = 'html', url: str = ''):
        self.raw = content or ''
        self.kind = kind
        self.url = url
        self.soup = None
        self.markdown = ''

        if kind == 'html':
            self.soup = make_soup(self.raw)
            for tag in self.soup(['script', 'style', 'noscript']):
                tag.decompose()
            self.text = block_text(self.soup)
        elif kind == 'markdown':
            self.markdown = self.raw
            self.text = '\n'.join(
                strip_markdown(line) for line in self.raw.splitlines() if line.strip()
            )
        else:
            self.text = self.raw

        self.lower = self.text.lower()

    @classmethod
    def from_html(cls, html: str, url: str = '') -> 'Document':
        return cls(html, 'html', url)

    @classmethod
    def from_markdown(cls, markdown: str, url: str = '') -> 'Document':
        return cls(markdown, 'markdown', url)

    @classmethod
    def from_text(cls, text: str, url: str = '') -> 'Document':
        return cls(text, 'text', url)


# ============================================================================
# Value converters
# ============================================================================

def _price(value: str) -> Optional[Decimal]:
    number = parse_brl_number(value)
    if number is None or number < PRICE_FLOOR:
        return None
    return number


def _count(value: str) -> Optional[int]:
    number = clean_number(value)
    if number is None or number > 99:
        return None
    return number


def _area(value: str) -> Optional[Decimal]:
    number = parse_brl_number(value)
    if number is None or number <= 0:
        return None
    return number


def _percent(value: str) -> Optional[int]:
    number = clean_number(value)
    if number is None or not 0 < number < 100:
        return None
    return number


def _city_state(city: str, state: str):
    state = state.upper()
    if state not in BRAZILIAN_STATES:
        return None
    return clean_text(city), state


def _iso_date(day: str, month: str, year: str) -> Optional[str]:
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def _short_text(value: str) -> Optional[str]:
    value = clean_text(value).strip(' -|,')
    return value[:100] if value else None


# ============================================================================
# Rules that need the parsed document
# ============================================================================

def html_heading(doc):
    if doc.soup is None:
        return None
    h1 = doc.soup.find('h1')
    return clean_text(h1.get_text(' ')) if h1 else None


def markdown_heading(doc):
    match = re.search(r'^#{1,2}\s+(.+)$', doc.markdown, re.MULTILINE)
    return strip_markdown(match.group(1)) if match else None


def markdown_strong(doc):
    for match in re.finditer(r'\*\*(.+?)\*\*', doc.markdown):
        text = strip_markdown(match.group(1))
        # Field labels ("Valor:") and prices are emphasised too
        if len(text) < 10 or text.endswith(':') or 'R$' in text:
            continue
        return text
    return None


def html_title_tag(doc):
    if doc.soup is None or doc.soup.title is None:
        return None
    title = clean_text(doc.soup.title.get_text())
    title = re.sub(r'\s*\|.*$', '', title)
    title = re.sub(r'\s*-\s*Leil[ãa]o Im[óo]vel.*$', '', title, flags=re.IGNORECASE)
    return title or None


def html_class_price(class_name: str):
    pattern = re.compile(
        rf'class="[^"]*\b{class_name}\b[^"]*"[^>]*>\s*(?:<[^>]+>\s*)*R\$\s*([\d.,]+)', re.IGNORECASE
    )

    def rule(doc):
        if doc.kind != 'html':
            return None
        for match in pattern.finditer(doc.raw):
            value = _price(match.group(1))
            if value is not None:
                return value
        return None

    rule.__name__ = f'class_{class_name.replace("-", "_")}'
    return rule


def any_currency_except(excluded: Optional[Decimal]):
    """First currency value in the document that is not the appraisal value."""
    pattern = re.compile(r'R\$\s*(\d{1,3}(?:\.\d{3})+(?:,\d{2})?|\d+(?:,\d{2})?)')

    def any_currency(doc):
        for match in pattern.finditer(doc.text):
            value = _price(match.group(1))
            if value is not None and value != excluded:
                return value
        return None

    return any_currency


def known_city_list(doc):
    lowered = doc.lower
    for name, city_state in KNOWN_CITIES.items():
        if re.search(rf'\b{re.escape(name)}\b', lowered):
            return city_state
    return None


def url_city_state(doc):
    city, state = extract_city_state_from_url(doc.url)
    return (city, state) if city and state else None


def selected_description(doc):
    if doc.soup is None:
        return None
    node = doc.soup.select_one('.description, .observacoes')
    if node is None:
        return None
    return clean_text(node.get_text(' ')) or None


def first_long_paragraph(doc):
    if doc.kind == 'html':
        paragraphs = [clean_text(p.get_text(' ')) for p in doc.soup.find_all('p')]
    elif doc.kind == 'markdown':
        paragraphs = [
            strip_markdown(block)
            for block in re.split(r'\n\s*\n', doc.markdown)
            if not block.lstrip().startswith(('#', '!'))
        ]
    else:
        paragraphs = [clean_text(block) for block in re.split(r'\n\s*\n', doc.text)]

    for paragraph in paragraphs:
        if len(paragraph) > MIN_PARAGRAPH_LENGTH:
            return paragraph
    return None


def image_references(doc) -> List[str]:
    """Raw image URLs in document order."""
    if doc.kind == 'html':
        refs = []
        og = doc.soup.find('meta', attrs={'property': 'og:image'})
        if og and og.get('content'):
            refs.append(og['content'])
        for img in doc.soup.find_all('img'):
            refs.append(img.get('data-src') or img.get('data-lazy-src') or img.get('src') or '')
        return refs
    if doc.kind == 'markdown':
        return re.findall(r'!\[[^\]]*\]\((\S+?)(?:\s+"[^"]*")?\)', doc.markdown)
    return re.findall(r'https?://\S+\.(?:jpe?g|png|webp)\b', doc.text, re.IGNORECASE)


# ============================================================================
# Ranked rule lists
# ============================================================================

TITLE_RULES = [html_heading, markdown_heading, markdown_strong, html_title_tag]

SALE_PRICE_RULES = [
    regex_rule('sale_value_label',
               r'Valor\s+(?:de\s+)?(?:Venda|Atual|M[íi]nimo)[^R\d\n]{0,40}R\$\s*([\d.,]+)', _price),
    html_class_price('discount-price'),
    regex_rule('price_label', r'(?:Valor|Pre[çc]o)\s*:?\s*R\$\s*([\d.,]+)', _price),
]

ORIGINAL_PRICE_RULES = [
    regex_rule('appraisal_value_label',
               r'(?:Valor\s+(?:de\s+)?)?Avalia[çc][ãa]o[^R\d\n]{0,40}R\$\s*([\d.,]+)', _price),
    html_class_price('last-price'),
]

DISCOUNT_RULES = [
    regex_rule('percent_discount', r'(\d{1,2})\s*%\s*(?:de\s+)?(?:desconto|abaixo)', _percent),
    regex_rule('discount_percent', r'desconto\s*(?:de\s*)?:?\s*(\d{1,2})\s*%', _percent),
]

BEDROOM_RULES = [
    regex_rule('count_before_bedrooms', r'\b(\d{1,2})\s*(?:quartos?|dormit[óo]rios?)\b', _count),
    regex_rule('bedrooms_label', r'\b(?:quartos?|dormit[óo]rios?)\s*:?\s*(\d{1,2})\b', _count),
]

BATHROOM_RULES = [
    regex_rule('count_before_bathrooms', r'\b(\d{1,2})\s*(?:banheiros?|wc|lavabos?)\b', _count),
    regex_rule('bathrooms_label', r'\bbanheiros?\s*:?\s*(\d{1,2})\b', _count),
]

PARKING_RULES = [
    regex_rule('count_before_parking', r'\b(\d{1,2})\s*(?:vagas?|garagens?)\b', _count),
    regex_rule('parking_label', r'\bvagas?(?:\s+de\s+garagem)?\s*:?\s*(\d{1,2})\b', _count),
]

USABLE_AREA_RULES = [
    regex_rule('usable_area_label',
               r'[áa]rea\s*(?:[úu]til|privativa|constru[íi]da)[^:\d\n]{0,20}:?\s*([\d.,]+)\s*m', _area),
    regex_rule('usable_area_suffix',
               r'([\d.,]+)\s*m[²2]\s*(?:de\s+)?(?:[áa]rea\s+)?(?:[úu]til|privativ|constru[íi]d)', _area),
]

LAND_AREA_RULES = [
    regex_rule('land_area_label', r'[áa]rea\s*(?:do\s*)?terreno[^:\d\n]{0,20}:?\s*([\d.,]+)\s*m', _area),
    regex_rule('land_area_suffix', r'([\d.,]+)\s*m[²2]\s*(?:de\s+)?terreno', _area),
]

GENERIC_AREA_RULES = [
    regex_rule('area_label', r'[áa]rea(?:\s+total)?\s*:?\s*([\d.,]+)\s*m', _area),
    regex_rule('square_meters', r'([\d.,]+)\s*m[²2]', _area),
    regex_rule('metros_quadrados', r'(\d+(?:,\d+)?)\s*metros?\s+quadrados?', _area),
]

CITY_STATE_RULES = [
    url_city_state,
    regex_rule('city_dash_state', rf'(?<![\wÀ-ú])({_WORDS})[ \t]*[-–/][ \t]*([A-Z]{{2}})\b', _city_state, flags=0),
    known_city_list,
]

NEIGHBORHOOD_RULES = [
    regex_rule('neighborhood_label', r'\bBairro\s*:\s*([^\n,<|]+)', _short_text),
    regex_rule('location_label', r'\bLocaliza[çc][ãa]o\s*:\s*([^\n,<|]+)', _short_text),
]

STREET_RULES = [
    regex_rule('address_label', r'\bEndere[çc]o[^:\n]{0,20}:\s*([^\n<]+)'),
]

ZIPCODE_RULES = [
    regex_rule('zipcode_label', r'\bCEP\s*:?\s*(\d{5}-?\d{3})'),
    regex_rule('zipcode', r'\b(\d{5}-\d{3})\b'),
]

AUCTION_DATE_RULES = [
    regex_rule('auction_date_label', r'(?:Encerra|Data)[^:\n]{0,40}:\s*(\d{2})/(\d{2})/(\d{4})', _iso_date),
    regex_rule('auction_date_time', r'(\d{2})/(\d{2})/(\d{4})\s*(?:às|as)\b', _iso_date),
]

DESCRIPTION_RULES = [selected_description, first_long_paragraph]


def _value(rules, doc):
    match = first_match(rules, doc)
    return match.value if match else None


def detect_type(title: str, body: str) -> PropertyType:
    """Keyword table over the title first, then the whole body."""
    for haystack in (title.lower(), body):
        for property_type, pattern in TYPE_KEYWORDS:
            if pattern.search(haystack):
                return property_type
    return PropertyType.HOUSE


def detect_modality(lowered: str) -> str:
    for name, pattern in MODALITIES:
        if pattern.search(lowered):
            return name
    return ''


def neighborhood_from_address(street: str, city: str) -> Optional[str]:
    """
    Neighborhood from a comma-delimited address such as
    "Rua A, 123, Centro, Fortaleza - CE".
    """
    parts = [part.strip() for part in street.split(',')][1:]
    for part in parts:
        part = re.sub(r'\s*[-–/]\s*[A-Z]{2}$', '', part).strip()
        if not part or part[0].isdigit() or not part[0].isupper():
            continue
        if city and part.lower() == city.lower():
            continue
        return part[:100]
    return None


def synthesize_title(property_type: PropertyType, bedrooms: Optional[int], city: str) -> str:
    title = property_type.label
    if bedrooms:
        title = f"{title} {bedrooms} Quartos"
    if city:
        title = f"{title} em {city}"
    return title


class FieldExtractor:
    """
    Builds PropertyDrafts from documents with the ranked rules above.
    """

    def __init__(self, max_images: int = 10, upgrade_thumbnails: bool = False):
        self.max_images = max_images
        self.upgrade_thumbnails = upgrade_thumbnails

    def extract(self, doc: Document, external_id: str, source_url: str = '',
                hints: Optional[Dict[str, str]] = None) -> PropertyDraft:
        """
        Extract a draft from a document.

        Args:
            doc: Parsed document
            external_id: Stable id of the listing
            source_url: Listing URL stored on the draft
            hints: Values already known from the listing page (city, state)

        Returns:
            PropertyDraft with a valid price

        Raises:
            ExtractionFailed: if no price could be resolved; carries the partial draft
        """
        hints = hints or {}
        draft = PropertyDraft(external_id=external_id, source_url=source_url or doc.url)

        original_price = _value(ORIGINAL_PRICE_RULES, doc)
        price_match = first_match(SALE_PRICE_RULES + [any_currency_except(original_price)], doc)
        price = price_match.value if price_match else None
        if price is None and original_price is not None:
            # Only an appraisal value is shown: that is the asking price
            price, original_price = original_price, None

        draft.price = price
        draft.original_price = original_price

        explicit_discount = _value(DISCOUNT_RULES, doc)
        draft.discount = explicit_discount if explicit_discount is not None else compute_discount(price, original_price)

        draft.bedrooms = _value(BEDROOM_RULES, doc)
        draft.bathrooms = _value(BATHROOM_RULES, doc)
        draft.parking_spaces = _value(PARKING_RULES, doc)

        area = _value(USABLE_AREA_RULES, doc) or _value(LAND_AREA_RULES, doc) or _value(GENERIC_AREA_RULES, doc)
        draft.area = area or Decimal(0)

        draft.address = self._extract_address(doc, hints)

        heading = _value(TITLE_RULES, doc) or ''
        draft.type = detect_type(heading, doc.lower)
        draft.title = truncate(heading, MAX_TITLE_LENGTH) or synthesize_title(
            draft.type, draft.bedrooms, draft.address.city
        )

        draft.accepts_fgts = 'fgts' in doc.lower
        draft.accepts_financing = bool(_FINANCING_RE.search(doc.lower))
        draft.modality = detect_modality(doc.lower)
        draft.auction_date = _value(AUCTION_DATE_RULES, doc)
        draft.description = truncate(_value(DESCRIPTION_RULES, doc) or '', MAX_DESCRIPTION_LENGTH)
        draft.images = filter_images(
            image_references(doc),
            base_url=doc.url,
            limit=self.max_images,
            upgrade=self.upgrade_thumbnails,
        )
        draft.raw_data = {
            'kind': doc.kind,
            'price_rule': price_match.rule if price_match else None,
            'content_length': len(doc.raw),
        }

        if not draft.is_valid:
            logger.info(f"No price found for {external_id} ({source_url or doc.url})")
            raise ExtractionFailed(f"No resolvable price for {external_id}", draft=draft)

        return draft

    def _extract_address(self, doc: Document, hints: Dict[str, str]) -> Address:
        address = Address()

        city_state = _value(CITY_STATE_RULES, doc)
        if hints.get('city') and hints.get('state'):
            address.city, address.state = hints['city'], hints['state'].upper()
        elif city_state:
            address.city, address.state = city_state

        street = _value(STREET_RULES, doc) or ''
        address.street = truncate(clean_text(street), 200)
        address.neighborhood = (
            _value(NEIGHBORHOOD_RULES, doc)
            or neighborhood_from_address(address.street, address.city)
            or ''
        )
        address.zipcode = _value(ZIPCODE_RULES, doc) or ''
        return address

    def extract_from_json(self, payload: Dict[str, Any], external_id: str,
                          source_url: str = '') -> PropertyDraft:
        """
        Build a draft from an AI service reply, coercing every field.

        The service may return null, numbers-as-strings or omit keys; strings
        default to '', booleans to False, lists to [].

        Raises:
            ExtractionFailed: if the reply has no usable price
        """
        def text(key: str) -> str:
            value = payload.get(key)
            return '' if value is None else str(value).strip()

        def flag(key: str) -> bool:
            value = payload.get(key)
            if isinstance(value, str):
                return value.strip().lower() in ('true', 'sim', 'yes', '1')
            return bool(value)

        def integer(key: str) -> Optional[int]:
            value = payload.get(key)
            if isinstance(value, bool) or value in (None, ''):
                return None
            if isinstance(value, (int, float)):
                return int(value)
            return clean_number(str(value))

        def decimal(key: str) -> Optional[Decimal]:
            value = payload.get(key)
            if isinstance(value, bool) or value in (None, ''):
                return None
            if isinstance(value, (int, float)):
                return Decimal(str(value))
            return parse_brl_number(str(value))

        def zipcode() -> str:
            match = _ZIPCODE_RE.match(text('address_zipcode'))
            return f"{match.group(1)}-{match.group(2)}" if match else ''

        def auction_date() -> Optional[str]:
            value = text('auction_date')
            match = _ISO_DATE_RE.match(value)
            if match:
                return _iso_date(match.group(3), match.group(2), match.group(1))
            match = _BR_DATE_RE.match(value)
            if match:
                return _iso_date(*match.groups())
            return None

        images = payload.get('images')
        if not isinstance(images, list):
            images = []

        state = text('address_state').upper()
        source = text('source_url')
        draft = PropertyDraft(
            external_id=external_id,
            title=truncate(text('title'), MAX_TITLE_LENGTH),
            type=coerce_property_type(text('type')),
            price=decimal('price'),
            original_price=decimal('original_price'),
            address=Address(
                street=truncate(text('address_street'), MAX_STREET_LENGTH),
                neighborhood=truncate(text('address_neighborhood'), MAX_NEIGHBORHOOD_LENGTH),
                city=truncate(text('address_city'), MAX_CITY_LENGTH),
                state=state if state in BRAZILIAN_STATES else '',
                zipcode=zipcode(),
            ),
            bedrooms=integer('bedrooms'),
            bathrooms=integer('bathrooms'),
            parking_spaces=integer('parking_spaces'),
            area=decimal('area') or Decimal(0),
            description=truncate(text('description'), MAX_DESCRIPTION_LENGTH),
            images=filter_images([str(url) for url in images if url], limit=self.max_images),
            accepts_fgts=flag('accepts_fgts'),
            accepts_financing=flag('accepts_financing'),
            modality=truncate(text('modality'), MAX_MODALITY_LENGTH),
            source_url=source if source and len(source) <= MAX_SOURCE_URL_LENGTH else source_url,
            auction_date=auction_date(),
            raw_data=dict(payload),
        )

        explicit = integer('discount')
        explicit = explicit if explicit is not None and 0 < explicit < 100 else None
        draft.discount = explicit or compute_discount(draft.price, draft.original_price)

        if not draft.title:
            draft.title = synthesize_title(draft.type, draft.bedrooms, draft.address.city)

        if not draft.is_valid:
            raise ExtractionFailed(f"Extraction service returned no price for {external_id}", draft=draft)

        return draft
