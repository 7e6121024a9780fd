"""
Error taxonomy and the error collector.
Recoverable defects are recorded as ParseError values; only stream-level
failures and unrecoverable documents surface as exceptions.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from .cursor import Position
from .models import ErrorKind, ParseError
from .utils import truncate_string

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base class for exceptions raised by the feed parser."""

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class StreamFailure(FeedError):
    """Raised when the underlying byte source fails to deliver data."""


class FatalFeedError(FeedError):
    """The document cannot be processed any further."""

    def __init__(self, message: str, errors: Optional[list] = None,
                 offer_count: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])
        self.offer_count = offer_count


class RequiredFieldError(FatalFeedError):
    """A required shop field is missing and strict mode is enabled."""


class ErrorCollector:
    """Append-only list of ParseError records with an optional cap."""

    def __init__(self, max_errors: Optional[int] = None):
        """
        Initialize collector.

        Args:
            max_errors: Stop recording after this many errors (None = unlimited)
        """
        self.max_errors = max_errors
        self.errors: List[ParseError] = []
        self.suppressed = 0

    @property
    def is_full(self) -> bool:
        return self.max_errors is not None and len(self.errors) >= self.max_errors

    def add(self,
            kind: ErrorKind,
            position: Position,
            message: str,
            value: str = '',
            force: bool = False) -> Optional[ParseError]:
        """
        Record an error at the position where the offending token began.

        Args:
            kind: Error kind
            position: Start of the offending token
            message: Human-readable description
            value: Offending raw text
            force: Record even when the cap has been reached

        Returns:
            The recorded error, or None if it was suppressed
        """
        if self.is_full and not force:
            if self.suppressed == 0:
                logger.warning(f"Error limit of {self.max_errors} reached, "
                               f"further errors are counted but not recorded")
            self.suppressed += 1
            return None

        error = ParseError(
            line=position.line,
            column=position.column,
            message=message,
            value=truncate_string(value or '', 200),
            kind=kind,
        )
        self.errors.append(error)
        logger.debug(f"{kind.value} at {position}: {message}")
        return error

    def count_by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for error in self.errors:
            counts[error.kind.value] = counts.get(error.kind.value, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[ParseError]:
        return iter(self.errors)
