"""
Feed parsing pipeline.
Drives tokenizer -> mapper -> builder over one feed stream and hands out
the shop header and each offer as soon as its element closes.
"""

import logging
from typing import IO, Callable, Dict, Iterator, List, Optional, Union

from .builder import EntityBuilder
from .config import OffersLayout, ParserConfig
from .errors import ErrorCollector, FatalFeedError, RequiredFieldError, StreamFailure
from .mapper import (
    AGE_ATTRIBUTES,
    AGE_VALUE,
    CATEGORY_ATTRIBUTES,
    CATEGORY_NAME,
    CONDITION_ATTRIBUTES,
    CURRENCY_ATTRIBUTES,
    DELIVERY_OPTION_ATTRIBUTES,
    OFFER_ATTRIBUTES,
    PARAM_ATTRIBUTES,
    PARAM_VALUE,
    PRICE_ATTRIBUTES,
    PRICE_VALUE,
    FieldMapper,
)
from .models import (
    Age,
    Catalog,
    Category,
    Condition,
    Currency,
    DeliveryOption,
    ErrorKind,
    Offer,
    Param,
    ParseResult,
    ParseStatus,
    Price,
    Shop,
)
from .tokenizer import EndOfStream, EndTag, StartTag, Text, XmlTokenizer

logger = logging.getLogger(__name__)

ParsedItem = Union[Shop, Offer]
Handler = Callable[[EntityBuilder, StartTag], None]


class FeedParser:
    """
    Single-pass parser for one feed stream.

    Iterate ``items()`` (shop and offers) or ``offers()`` once; afterwards
    ``result`` holds the catalog, the offer count and all diagnostics.
    """

    def __init__(self, stream: IO, config: Optional[ParserConfig] = None):
        """
        Initialize parser.

        Args:
            stream: Decompressed feed stream (``read(size)`` -> bytes or str)
            config: Parser configuration (defaults if None)
        """
        self.config = config or ParserConfig()
        self.errors = ErrorCollector(self.config.max_errors)
        self.mapper = FieldMapper(self.errors)
        self.catalog = Catalog()
        self.offer_count = 0
        self._tokens = XmlTokenizer(
            stream,
            self.errors,
            chunk_size=self.config.chunk_size,
            html_entities=self.config.html_entities,
            implicit_close=self.config.offer_tags,
            max_markup_size=self.config.max_markup_size,
        )
        self._started = False
        self._failed = False
        self._shop_seen = False
        self._shop_builder: Optional[EntityBuilder] = None

        self._shop_handlers: Dict[str, Handler] = {
            'currencies': lambda b, t: self._parse_list(b, t, 'currency', 'currencies', self._parse_currency),
            'categories': lambda b, t: self._parse_list(b, t, 'category', 'categories', self._parse_category),
            'delivery-options': lambda b, t: self._parse_list(
                b, t, 'option', 'delivery_options', self._parse_delivery_option),
            'pickup-options': lambda b, t: self._parse_list(
                b, t, 'option', 'pickup_options', self._parse_delivery_option),
        }
        self._offer_handlers: Dict[str, Handler] = {
            'price': lambda b, t: self._set_price(b, t, 'price'),
            'oldprice': lambda b, t: self._set_price(b, t, 'old_price'),
            'param': lambda b, t: b.append('params', self._parse_param(t)),
            'condition': lambda b, t: b.set('condition', self._parse_condition(t)),
            'credit-template': self._set_credit_template,
            'age': self._set_age,
            'delivery-options': self._shop_handlers['delivery-options'],
            'pickup-options': self._shop_handlers['pickup-options'],
        }

    # -- public API --------------------------------------------------------

    def items(self) -> Iterator[ParsedItem]:
        """
        Yield the Shop (when </shop> is reached) and every Offer as it closes.

        Raises:
            FatalFeedError: No root element, or a required shop field is
                missing in strict mode
            RuntimeError: If called a second time
        """
        if self._started:
            raise RuntimeError("A FeedParser can be iterated only once; use a new parser and stream")
        self._started = True

        logger.info("Parsing feed")
        try:
            yield from self._parse_document()
        except StreamFailure as e:
            self._fail(e)

        logger.info(f"Feed parsed: {self.offer_count} offers, "
                    f"{len(self.errors) + self.errors.suppressed} errors")

    def offers(self) -> Iterator[Offer]:
        for item in self.items():
            if isinstance(item, Offer):
                yield item

    @property
    def status(self) -> ParseStatus:
        if self._failed:
            return ParseStatus.FAILED
        if len(self.errors) or self.errors.suppressed:
            return ParseStatus.PARTIAL_SUCCESS
        return ParseStatus.SUCCESS

    @property
    def result(self) -> ParseResult:
        return ParseResult(
            catalog=self.catalog,
            offer_count=self.offer_count,
            errors=list(self.errors.errors),
            suppressed_errors=self.errors.suppressed,
            status=self.status,
        )

    # -- document structure ------------------------------------------------

    def _fail(self, error: StreamFailure) -> None:
        self._failed = True
        self.errors.add(ErrorKind.STREAM_FAILURE, self._tokens.position, str(error), force=True)
        if self._shop_builder is not None:
            # keep whatever header data was read before the failure
            self.catalog.shop = self._shop_builder.entity
            self._shop_builder = None
        logger.warning(f"Feed stream failed after {self.offer_count} offers: {error}")

    def _allows_offers(self, nested: bool) -> bool:
        layout = self.config.offers_layout
        if layout == OffersLayout.ANY:
            return True
        return nested == (layout == OffersLayout.NESTED)

    def _parse_document(self) -> Iterator[ParsedItem]:
        root = self._find_root()
        if root.name != self.config.root_tag:
            self.errors.add(
                ErrorKind.UNRECOGNIZED_FIELD,
                root.position,
                f"unexpected root element <{root.name}>, expected <{self.config.root_tag}>",
                root.name,
            )
        self.catalog.date = root.attrs.get('date', '')

        for token in self._tokens:
            if isinstance(token, StartTag):
                if token.name == 'shop':
                    yield from self._parse_shop(token)
                elif token.name == 'offers':
                    yield from self._parse_offers(token, nested=False)
                else:
                    self.mapper.report_unrecognized(root.name, token.name, token.position)
                    self._skip(token)
            elif isinstance(token, Text):
                self._check_text(token, root.name)
            else:
                break

        self._parse_epilogue()

    def _find_root(self) -> StartTag:
        for token in self._tokens:
            if isinstance(token, StartTag):
                return token
            if isinstance(token, Text):
                self._check_text(token, 'document prolog')
            elif isinstance(token, EndOfStream):
                break
        raise FatalFeedError("No root element found in feed", errors=self.errors.errors)

    def _parse_epilogue(self) -> None:
        for token in self._tokens:
            if isinstance(token, StartTag):
                self.errors.add(ErrorKind.MALFORMED_XML, token.position,
                                f"element <{token.name}> after the root element", token.name)
                self._skip(token)
            elif isinstance(token, Text):
                self._check_text(token, 'document epilogue')
            elif isinstance(token, EndOfStream):
                return

    def _skip(self, start: StartTag) -> None:
        """Consume tokens up to the end tag matching ``start``."""
        depth = 1
        for token in self._tokens:
            if isinstance(token, StartTag):
                depth += 1
            elif isinstance(token, EndTag):
                depth -= 1
                if depth == 0:
                    return
            elif isinstance(token, EndOfStream):
                return

    def _check_text(self, token: Text, context: str) -> None:
        if token.text.strip():
            self.errors.add(ErrorKind.MALFORMED_XML, token.position,
                            f"unexpected text in {context}", token.text.strip())

    def _read_text(self, start: StartTag) -> str:
        """Collect text and CDATA of ``start`` up to its end tag, stripped."""
        parts: List[str] = []
        for token in self._tokens:
            if isinstance(token, Text):
                parts.append(token.text)
            elif isinstance(token, StartTag):
                self.mapper.report_unrecognized(start.name, token.name, token.position)
                self._skip(token)
            else:
                break
        return ''.join(parts).strip()

    # -- entities ----------------------------------------------------------

    def _dispatch(self, builder: EntityBuilder, token: StartTag, context: str,
                  handlers: Dict[str, Handler]) -> None:
        handler = handlers.get(token.name)
        if handler is not None:
            handler(builder, token)
        elif self.mapper.accepts(context, token.name):
            text = self._read_text(token)
            builder.apply(self.mapper.map_field(context, token.name, text, token.position))
        else:
            self.mapper.report_unrecognized(context, token.name, token.position)
            self._skip(token)

    def _parse_fields(self, builder: EntityBuilder, start: StartTag, context: str,
                      handlers: Dict[str, Handler]) -> None:
        for token in self._tokens:
            if isinstance(token, StartTag):
                self._dispatch(builder, token, context, handlers)
            elif isinstance(token, Text):
                self._check_text(token, f"<{start.name}>")
            else:
                return

    def _apply_attributes(self, builder: EntityBuilder, table, start: StartTag) -> None:
        for assignment in self.mapper.map_attributes(table, start.name, start.attrs, start.position):
            builder.apply(assignment)

    def _parse_shop(self, start: StartTag) -> Iterator[ParsedItem]:
        if self._shop_seen:
            self.errors.add(ErrorKind.UNRECOGNIZED_FIELD, start.position,
                            "duplicate <shop> element ignored", start.name)
            self._skip(start)
            return
        self._shop_seen = True

        builder = EntityBuilder(Shop, start.name, start.position, self.errors)
        self._shop_builder = builder
        for token in self._tokens:
            if isinstance(token, StartTag):
                if token.name == 'offers':
                    yield from self._parse_offers(token, nested=True)
                else:
                    self._dispatch(builder, token, 'shop', self._shop_handlers)
            elif isinstance(token, Text):
                self._check_text(token, '<shop>')
            else:
                break

        shop = builder.finalize()
        self._shop_builder = None
        if builder.missing and self.config.strict_required_fields:
            raise RequiredFieldError(
                f"<shop> is missing required fields: {', '.join(builder.missing)}",
                errors=self.errors.errors,
                offer_count=self.offer_count,
            )
        self.catalog.shop = shop
        logger.info(f"Shop header parsed: {shop.name!r}, {len(shop.categories)} categories, "
                    f"{len(shop.currencies)} currencies")
        yield shop

    def _parse_list(self, builder: EntityBuilder, start: StartTag, item_tag: str,
                    field_name: str, parse_item: Callable[[StartTag], object]) -> None:
        for token in self._tokens:
            if isinstance(token, StartTag):
                if token.name == item_tag:
                    builder.append(field_name, parse_item(token))
                else:
                    self.mapper.report_unrecognized(start.name, token.name, token.position)
                    self._skip(token)
            elif isinstance(token, Text):
                self._check_text(token, f"<{start.name}>")
            else:
                return

    def _parse_currency(self, start: StartTag) -> Currency:
        builder = EntityBuilder(Currency, start.name, start.position, self.errors)
        self._apply_attributes(builder, CURRENCY_ATTRIBUTES, start)
        self._read_text(start)
        return builder.finalize()

    def _parse_category(self, start: StartTag) -> Category:
        builder = EntityBuilder(Category, start.name, start.position, self.errors)
        self._apply_attributes(builder, CATEGORY_ATTRIBUTES, start)
        builder.set(CATEGORY_NAME.name, self._read_text(start))
        return builder.finalize()

    def _parse_delivery_option(self, start: StartTag) -> DeliveryOption:
        builder = EntityBuilder(DeliveryOption, start.name, start.position, self.errors)
        self._apply_attributes(builder, DELIVERY_OPTION_ATTRIBUTES, start)
        self._read_text(start)
        return builder.finalize()

    def _parse_offers(self, start: StartTag, nested: bool) -> Iterator[Offer]:
        if not self._allows_offers(nested):
            where = 'inside <shop>' if nested else 'outside <shop>'
            self.errors.add(
                ErrorKind.UNRECOGNIZED_FIELD,
                start.position,
                f"offers section {where} ignored (offers_layout={self.config.offers_layout.value})",
                start.name,
            )
            self._skip(start)
            return

        for token in self._tokens:
            if isinstance(token, StartTag):
                if token.name in self.config.offer_tags:
                    offer = self._parse_offer(token)
                    self.offer_count += 1
                    yield offer
                else:
                    self.mapper.report_unrecognized(start.name, token.name, token.position)
                    self._skip(token)
            elif isinstance(token, Text):
                self._check_text(token, f"<{start.name}>")
            else:
                return

    def _parse_offer(self, start: StartTag) -> Offer:
        builder = EntityBuilder(Offer, start.name, start.position, self.errors)
        self._apply_attributes(builder, OFFER_ATTRIBUTES, start)
        self._parse_fields(builder, start, 'offer', self._offer_handlers)
        return builder.finalize()

    def _set_price(self, offer: EntityBuilder, start: StartTag, field_name: str) -> None:
        builder = EntityBuilder(Price, start.name, start.position, self.errors)
        self._apply_attributes(builder, PRICE_ATTRIBUTES, start)
        amount = self.mapper.convert(PRICE_VALUE, self._read_text(start), start.position, f"<{start.name}>")
        if amount is None:
            return
        builder.apply(amount)
        offer.set(field_name, builder.finalize())

    def _parse_param(self, start: StartTag) -> Param:
        builder = EntityBuilder(Param, start.name, start.position, self.errors)
        self._apply_attributes(builder, PARAM_ATTRIBUTES, start)
        builder.set(PARAM_VALUE.name, self._read_text(start))
        return builder.finalize()

    def _parse_condition(self, start: StartTag) -> Condition:
        builder = EntityBuilder(Condition, start.name, start.position, self.errors)
        self._apply_attributes(builder, CONDITION_ATTRIBUTES, start)
        self._parse_fields(builder, start, 'condition', {})
        return builder.finalize()

    def _set_credit_template(self, offer: EntityBuilder, start: StartTag) -> None:
        if 'id' in start.attrs:
            offer.set('credit_template_id', start.attrs['id'])
        self._read_text(start)

    def _set_age(self, offer: EntityBuilder, start: StartTag) -> None:
        builder = EntityBuilder(Age, start.name, start.position, self.errors)
        self._apply_attributes(builder, AGE_ATTRIBUTES, start)
        value = self.mapper.convert(AGE_VALUE, self._read_text(start), start.position, f"<{start.name}>")
        if value is None:
            return
        builder.apply(value)
        offer.set('age', builder.finalize())


def parse_feed(stream: IO,
               config: Optional[ParserConfig] = None,
               on_offer: Optional[Callable[[Offer], None]] = None) -> ParseResult:
    """
    Parse a whole feed in one call.

    Args:
        stream: Decompressed feed stream
        config: Parser configuration
        on_offer: Called with each offer as soon as it is complete; when
            omitted, offers are collected into ``result.offers``

    Returns:
        ParseResult with catalog, offer count and errors

    Raises:
        FatalFeedError: See ``FeedParser.items``
    """
    parser = FeedParser(stream, config)
    collected: List[Offer] = []
    for offer in parser.offers():
        if on_offer is not None:
            on_offer(offer)
        else:
            collected.append(offer)

    result = parser.result
    result.offers = collected
    return result
