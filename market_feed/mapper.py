"""
Field mapping module.
Maps feed tags and attributes to entity fields with typed coercion.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from .cursor import Position
from .errors import ErrorCollector
from .models import ErrorKind

logger = logging.getLogger(__name__)

_UNSIGNED_RE = re.compile(r'\+?[0-9]+')
_FLOAT_RE = re.compile(r'[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?')

UINT32_MAX = 2 ** 32 - 1
UINT64_MAX = 2 ** 64 - 1


class FieldKind(str, Enum):
    """Declared type of a mapped field."""
    TEXT = "text"
    BOOL = "bool"
    OPTIONAL_BOOL = "optional_bool"
    UINT32 = "uint32"
    OPTIONAL_UINT32 = "optional_uint32"
    UINT64 = "uint64"
    FLOAT = "float"
    HOUR = "hour"


@dataclass(frozen=True)
class FieldSpec:
    """Target of a tag or attribute: entity field name and type."""
    name: str
    kind: FieldKind = FieldKind.TEXT
    repeated: bool = False


class Assignment(NamedTuple):
    """Typed value for a known field."""
    spec: FieldSpec
    value: Any


class ExtensionValue(NamedTuple):
    """Raw value routed into an offer's extension map."""
    tag: str
    value: str


MappedValue = Union[Assignment, ExtensionValue]

T = FieldKind

SHOP_FIELDS: Dict[str, FieldSpec] = {
    'name': FieldSpec('name'),
    'company': FieldSpec('company'),
    'url': FieldSpec('url'),
    'platform': FieldSpec('platform'),
    'version': FieldSpec('version'),
    'agency': FieldSpec('agency'),
    'email': FieldSpec('email'),
}

OFFER_FIELDS: Dict[str, FieldSpec] = {
    'name': FieldSpec('name'),
    'typePrefix': FieldSpec('type_prefix'),
    'vendor': FieldSpec('vendor'),
    'vendorCode': FieldSpec('vendor_code'),
    'model': FieldSpec('model'),
    'url': FieldSpec('url'),
    'currencyId': FieldSpec('currency_id'),
    'categoryId': FieldSpec('category_id', T.UINT64),
    'picture': FieldSpec('pictures', repeated=True),
    'enable_auto_discounts': FieldSpec('enable_auto_discounts', T.BOOL),
    'delivery': FieldSpec('delivery', T.OPTIONAL_BOOL),
    'pickup': FieldSpec('pickup', T.OPTIONAL_BOOL),
    'store': FieldSpec('store', T.OPTIONAL_BOOL),
    'description': FieldSpec('description'),
    'sales_notes': FieldSpec('sales_notes'),
    'min-quantity': FieldSpec('min_quantity', T.OPTIONAL_UINT32),
    'manufacturer_warranty': FieldSpec('manufacturer_warranty', T.BOOL),
    'country_of_origin': FieldSpec('country_of_origin'),
    'adult': FieldSpec('adult', T.BOOL),
    'barcode': FieldSpec('barcodes', repeated=True),
    'expiry': FieldSpec('expiry'),
    'weight': FieldSpec('weight', T.FLOAT),
    'dimensions': FieldSpec('dimensions'),
    'downloadable': FieldSpec('downloadable', T.BOOL),
}

OFFER_ATTRIBUTES: Dict[str, FieldSpec] = {
    'id': FieldSpec('id'),
    'type': FieldSpec('type'),
    'available': FieldSpec('available', T.OPTIONAL_BOOL),
    'bid': FieldSpec('bid', T.UINT32),
    'cbid': FieldSpec('cbid', T.UINT32),
    'group_id': FieldSpec('group_id', T.UINT32),
}

CURRENCY_ATTRIBUTES: Dict[str, FieldSpec] = {
    'id': FieldSpec('id'),
    'rate': FieldSpec('rate'),
    'plus': FieldSpec('plus'),
}

CATEGORY_ATTRIBUTES: Dict[str, FieldSpec] = {
    'id': FieldSpec('id', T.UINT64),
    'parentId': FieldSpec('parent_id', T.UINT64),
}

DELIVERY_OPTION_ATTRIBUTES: Dict[str, FieldSpec] = {
    'cost': FieldSpec('cost', T.UINT32),
    'days': FieldSpec('days'),
    'order-before': FieldSpec('order_before', T.HOUR),
}

PRICE_ATTRIBUTES: Dict[str, FieldSpec] = {
    'from': FieldSpec('from_', T.BOOL),
}

PARAM_ATTRIBUTES: Dict[str, FieldSpec] = {
    'name': FieldSpec('name'),
    'unit': FieldSpec('unit'),
    'id': FieldSpec('id'),
    'value_id': FieldSpec('value_id'),
}

CONDITION_ATTRIBUTES: Dict[str, FieldSpec] = {
    'type': FieldSpec('type'),
}

CONDITION_FIELDS: Dict[str, FieldSpec] = {
    'reason': FieldSpec('reason'),
}

AGE_ATTRIBUTES: Dict[str, FieldSpec] = {
    'unit': FieldSpec('unit'),
}

# Scalar child tables per entity context; offers route unknown tags to extra_fields
FIELD_TABLES: Dict[str, Dict[str, FieldSpec]] = {
    'shop': SHOP_FIELDS,
    'offer': OFFER_FIELDS,
    'condition': CONDITION_FIELDS,
}

EXTENSIBLE_CONTEXTS = frozenset({'offer'})

# Text content of nested entities
PRICE_VALUE = FieldSpec('price', T.FLOAT)
AGE_VALUE = FieldSpec('value', T.UINT32)
PARAM_VALUE = FieldSpec('value')
CATEGORY_NAME = FieldSpec('name')


def _parse_unsigned(text: str, maximum: int) -> Tuple[bool, Optional[int], str]:
    if not _UNSIGNED_RE.fullmatch(text):
        return False, None, "not an unsigned integer"
    value = int(text)
    if value > maximum:
        return False, None, f"out of range 0..{maximum}"
    return True, value, ''


def coerce(kind: FieldKind, text: str) -> Tuple[bool, Any, str]:
    """
    Convert raw feed text to the declared field type.

    Args:
        kind: Declared field type
        text: Raw (unescaped, stripped) text

    Returns:
        Tuple of (ok, value, reason); value is None when not ok
    """
    if kind == FieldKind.TEXT:
        return True, text, ''

    if kind in (FieldKind.BOOL, FieldKind.OPTIONAL_BOOL):
        if text == 'true':
            return True, True, ''
        if text == 'false':
            return True, False, ''
        return False, None, "expected 'true' or 'false'"

    if kind in (FieldKind.UINT32, FieldKind.OPTIONAL_UINT32):
        return _parse_unsigned(text, UINT32_MAX)

    if kind == FieldKind.UINT64:
        return _parse_unsigned(text, UINT64_MAX)

    if kind == FieldKind.HOUR:
        return _parse_unsigned(text, 23)

    if kind == FieldKind.FLOAT:
        if not _FLOAT_RE.fullmatch(text):
            return False, None, "not a number"
        return True, float(text), ''

    raise ValueError(f"Unknown field kind: {kind}")


class FieldMapper:
    """Maps tag text and attributes to typed field assignments."""

    def __init__(self, errors: ErrorCollector):
        self.errors = errors

    def accepts(self, context: str, tag: str) -> bool:
        """Whether a child tag of ``context`` is mapped rather than rejected."""
        return tag in FIELD_TABLES.get(context, {}) or context in EXTENSIBLE_CONTEXTS

    def convert(self,
                spec: FieldSpec,
                text: str,
                position: Position,
                source: str) -> Optional[Assignment]:
        """
        Coerce ``text`` for ``spec``; record a TypeMismatch on failure.

        Args:
            spec: Target field
            text: Raw value
            position: Start of the element carrying the value
            source: Tag or attribute label used in the message

        Returns:
            Assignment, or None if the value could not be coerced
        """
        ok, value, reason = coerce(spec.kind, text)
        if not ok:
            self.errors.add(
                ErrorKind.TYPE_MISMATCH,
                position,
                f"invalid value for {source} ({spec.kind.value}): {reason}",
                text,
            )
            return None
        return Assignment(spec, value)

    def map_field(self,
                  context: str,
                  tag: str,
                  text: str,
                  position: Position) -> Optional[MappedValue]:
        """
        Map a child element of ``context`` to a field or the extension map.

        Args:
            context: Entity tag the child belongs to ('shop', 'offer', ...)
            tag: Child tag name
            text: Child text content
            position: Start of the child element

        Returns:
            Assignment for known fields, ExtensionValue for unknown offer
            fields, None when the value was rejected or the tag is unknown
        """
        table = FIELD_TABLES.get(context, {})
        spec = table.get(tag)
        if spec is not None:
            return self.convert(spec, text, position, f"<{tag}>")

        if context in EXTENSIBLE_CONTEXTS:
            logger.debug(f"Extension field <{tag}> in <{context}>")
            return ExtensionValue(tag, text)

        self.report_unrecognized(context, tag, position, text)
        return None

    def map_attributes(self,
                       table: Dict[str, FieldSpec],
                       tag: str,
                       attrs: Dict[str, str],
                       position: Position) -> List[Assignment]:
        """Convert known attributes; unknown attributes are ignored."""
        assignments = []
        for attr_name, raw_value in attrs.items():
            spec = table.get(attr_name)
            if spec is None:
                continue
            assignment = self.convert(spec, raw_value, position, f"<{tag} {attr_name}>")
            if assignment is not None:
                assignments.append(assignment)
        return assignments

    def report_unrecognized(self, context: str, tag: str, position: Position, value: str = '') -> None:
        self.errors.add(
            ErrorKind.UNRECOGNIZED_FIELD,
            position,
            f"unrecognized element <{tag}> in <{context}>",
            value,
        )
