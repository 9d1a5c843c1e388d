"""
Draft types produced by every extractor before staging.
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Dict, List, Any


class PropertyType(str, Enum):
    """Catalog property types."""
    HOUSE = 'house'
    APARTMENT = 'apartment'
    LAND = 'land'
    COMMERCIAL = 'commercial'

    @property
    def label(self) -> str:
        return TYPE_LABELS[self]


TYPE_LABELS = {
    PropertyType.HOUSE: 'Casa',
    PropertyType.APARTMENT: 'Apartamento',
    PropertyType.LAND: 'Terreno',
    PropertyType.COMMERCIAL: 'Imóvel Comercial',
}

# Names used by the auction site and by the AI extraction contract
PORTUGUESE_TYPES = {
    'casa': PropertyType.HOUSE,
    'apartamento': PropertyType.APARTMENT,
    'terreno': PropertyType.LAND,
    'comercial': PropertyType.COMMERCIAL,
}


def coerce_property_type(value: Any) -> PropertyType:
    """Map an English or Portuguese type name to PropertyType, defaulting to house."""
    if isinstance(value, PropertyType):
        return value
    name = str(value or '').strip().lower()
    if name in PORTUGUESE_TYPES:
        return PORTUGUESE_TYPES[name]
    try:
        return PropertyType(name)
    except ValueError:
        return PropertyType.HOUSE


def compute_discount(price: Optional[Decimal], original_price: Optional[Decimal]) -> Optional[int]:
    """
    Percent discount of price against original_price.

    Returns None unless both prices are positive and original_price > price.
    Halves round away from zero, so 0.5 -> 1.
    """
    if not price or not original_price:
        return None
    if price <= 0 or original_price <= price:
        return None
    ratio = (Decimal(1) - Decimal(price) / Decimal(original_price)) * 100
    return int(ratio.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


@dataclass
class Address:
    street: str = ''
    neighborhood: str = ''
    city: str = ''
    state: str = ''
    zipcode: str = ''


@dataclass
class CandidateLink:
    """A detail-page link found on a listing page."""
    url: str
    external_id: str
    city: str = ''
    state: str = ''

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class PropertyDraft:
    """An extracted property that has not been reviewed yet."""

    external_id: str
    price: Optional[Decimal] = None
    title: str = ''
    type: PropertyType = PropertyType.HOUSE
    original_price: Optional[Decimal] = None
    discount: Optional[int] = None
    address: Address = field(default_factory=Address)
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    parking_spaces: Optional[int] = None
    area: Decimal = Decimal(0)
    description: str = ''
    images: List[str] = field(default_factory=list)
    accepts_fgts: bool = False
    accepts_financing: bool = False
    modality: str = ''
    source_url: str = ''
    auction_date: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.price is not None and self.price > 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (decimals as strings)."""
        return {
            'external_id': self.external_id,
            'title': self.title,
            'type': self.type.value,
            'price': _decimal_str(self.price),
            'original_price': _decimal_str(self.original_price),
            'discount': self.discount,
            'address': asdict(self.address),
            'bedrooms': self.bedrooms,
            'bathrooms': self.bathrooms,
            'parking_spaces': self.parking_spaces,
            'area': _decimal_str(self.area),
            'description': self.description,
            'images': list(self.images),
            'accepts_fgts': self.accepts_fgts,
            'accepts_financing': self.accepts_financing,
            'modality': self.modality,
            'source_url': self.source_url,
            'auction_date': self.auction_date,
        }

    def to_record_fields(self) -> Dict[str, Any]:
        """Column values shared by staging and catalog rows."""
        return {
            'external_id': self.external_id,
            'title': self.title,
            'type': self.type.value,
            'price': self.price,
            'original_price': self.original_price,
            'discount': self.discount,
            'address_street': self.address.street,
            'address_neighborhood': self.address.neighborhood,
            'address_city': self.address.city,
            'address_state': self.address.state,
            'address_zipcode': self.address.zipcode,
            'bedrooms': self.bedrooms,
            'bathrooms': self.bathrooms,
            'parking_spaces': self.parking_spaces,
            'area': self.area,
            'description': self.description,
            'images': list(self.images),
            'accepts_fgts': self.accepts_fgts,
            'accepts_financing': self.accepts_financing,
            'modality': self.modality,
            'source_url': self.source_url,
            'auction_date': self.auction_date,
        }


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format(value, 'f')
