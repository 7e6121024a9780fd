"""
Streaming, error-tolerant parser for YML product catalog feeds.
"""

__version__ = "0.1.0"
__author__ = "Automation Team"

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
    ParseError,
    ParseResult,
    ParseStatus,
    Price,
    Shop,
)
from .config import OffersLayout, ParserConfig
from .config_loader import ConfigLoader
from .errors import (
    ErrorCollector,
    FatalFeedError,
    FeedError,
    RequiredFieldError,
    StreamFailure,
)
from .feed_source import open_feed
from .logging_setup import setup_logging, get_logger
from .parser import FeedParser, parse_feed

__all__ = [
    'Age',
    'Catalog',
    'Category',
    'Condition',
    'Currency',
    'DeliveryOption',
    'ErrorKind',
    'Offer',
    'Param',
    'ParseError',
    'ParseResult',
    'ParseStatus',
    'Price',
    'Shop',
    'OffersLayout',
    'ParserConfig',
    'ConfigLoader',
    'ErrorCollector',
    'FatalFeedError',
    'FeedError',
    'RequiredFieldError',
    'StreamFailure',
    'open_feed',
    'setup_logging',
    'get_logger',
    'FeedParser',
    'parse_feed',
]
