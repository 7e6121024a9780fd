"""
Data models for the market feed parser.
Defines the catalog entity graph and diagnostics using dataclasses.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple


class ErrorKind(str, Enum):
    """Kind of a recorded feed defect."""
    MALFORMED_XML = "MalformedXml"
    TYPE_MISMATCH = "TypeMismatch"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    UNRECOGNIZED_FIELD = "UnrecognizedField"
    STREAM_FAILURE = "StreamFailure"


class ParseStatus(str, Enum):
    """Overall outcome of a parse run."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True)
class ParseError:
    """Single defect found in the feed, located at its source token."""
    line: int
    column: int
    message: str
    value: str = ''
    kind: ErrorKind = ErrorKind.MALFORMED_XML

    @property
    def severity(self) -> str:
        return 'warning' if self.kind == ErrorKind.UNRECOGNIZED_FIELD else 'error'

    def to_dict(self) -> dict:
        return {
            'line': self.line,
            'column': self.column,
            'kind': self.kind.value,
            'severity': self.severity,
            'message': self.message,
            'value': self.value,
        }


@dataclass
class Currency:
    id: str = ''
    rate: str = ''  # numeric or a marker such as "CBRF"
    plus: str = ''

    REQUIRED: ClassVar[Tuple[str, ...]] = ('id', 'rate')


@dataclass
class Category:
    id: int = 0
    parent_id: int = 0  # 0 = root category
    name: str = ''

    REQUIRED: ClassVar[Tuple[str, ...]] = ('id',)


@dataclass
class DeliveryOption:
    cost: int = 0
    days: str = ''
    order_before: Optional[int] = None  # hour of day, 0-23

    REQUIRED: ClassVar[Tuple[str, ...]] = ()


@dataclass
class Price:
    price: float = 0.0
    from_: bool = False  # "starting at" price

    REQUIRED: ClassVar[Tuple[str, ...]] = ()

    def to_dict(self) -> dict:
        return {'price': self.price, 'from': self.from_}


@dataclass
class Param:
    name: str = ''
    unit: str = ''
    value: str = ''
    id: str = ''
    value_id: str = ''

    REQUIRED: ClassVar[Tuple[str, ...]] = ()


@dataclass
class Condition:
    type: str = ''
    reason: str = ''

    REQUIRED: ClassVar[Tuple[str, ...]] = ()


@dataclass
class Age:
    unit: str = ''
    value: int = 0

    REQUIRED: ClassVar[Tuple[str, ...]] = ()


@dataclass
class Shop:
    """Feed header: shop identity, currencies, categories, delivery."""
    name: str = ''
    company: str = ''
    url: str = ''
    currencies: List[Currency] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
    delivery_options: List[DeliveryOption] = field(default_factory=list)
    pickup_options: List[DeliveryOption] = field(default_factory=list)
    platform: str = ''
    version: str = ''
    agency: str = ''
    email: str = ''

    REQUIRED: ClassVar[Tuple[str, ...]] = ('name', 'company', 'url')

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Offer:
    """
    One product listing.

    Tri-state fields (available, delivery, pickup, store) use None for
    "not specified". Tags outside the canonical schema are kept in
    ``extra_fields`` as ordered lists of raw values.
    """
    id: str = ''
    type: str = ''
    available: Optional[bool] = None
    name: str = ''
    category_id: int = 0
    price: Optional[Price] = None
    old_price: Optional[Price] = None
    currency_id: str = ''
    url: str = ''
    vendor: str = ''
    vendor_code: str = ''
    model: str = ''
    type_prefix: str = ''
    bid: int = 0
    cbid: int = 0
    enable_auto_discounts: bool = False
    pictures: List[str] = field(default_factory=list)
    delivery: Optional[bool] = None
    pickup: Optional[bool] = None
    delivery_options: List[DeliveryOption] = field(default_factory=list)
    pickup_options: List[DeliveryOption] = field(default_factory=list)
    store: Optional[bool] = None
    description: str = ''
    sales_notes: str = ''
    min_quantity: Optional[int] = None
    manufacturer_warranty: bool = False
    country_of_origin: str = ''
    adult: bool = False
    barcodes: List[str] = field(default_factory=list)
    params: List[Param] = field(default_factory=list)
    condition: Optional[Condition] = None
    credit_template_id: str = ''
    expiry: str = ''
    weight: float = 0.0
    dimensions: str = ''
    downloadable: bool = False
    age: Optional[Age] = None
    group_id: int = 0
    extra_fields: Dict[str, List[str]] = field(default_factory=dict)

    REQUIRED: ClassVar[Tuple[str, ...]] = ('id',)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d['price'] = self.price.to_dict() if self.price else None
        d['old_price'] = self.old_price.to_dict() if self.old_price else None
        return d


@dataclass
class Catalog:
    """Root of the feed: generation date and the shop header."""
    date: str = ''
    shop: Optional[Shop] = None

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'shop': self.shop.to_dict() if self.shop else None,
        }


@dataclass
class ParseResult:
    """Outcome of one parse run."""
    catalog: Catalog
    offer_count: int = 0
    errors: List[ParseError] = field(default_factory=list)
    suppressed_errors: int = 0
    status: ParseStatus = ParseStatus.SUCCESS
    offers: List[Offer] = field(default_factory=list)  # eager mode only

    @property
    def ok(self) -> bool:
        return self.status != ParseStatus.FAILED

    def summary(self) -> Dict[str, Any]:
        return {
            'date': self.catalog.date,
            'shop': self.catalog.shop.name if self.catalog.shop else None,
            'offer_count': self.offer_count,
            'error_count': len(self.errors) + self.suppressed_errors,
            'status': self.status.value,
        }
