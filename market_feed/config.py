"""
Parser configuration.
All parser behaviour switches live in one explicit dataclass.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class OffersLayout(str, Enum):
    """Where offer sections are accepted."""
    ANY = "any"          # inside <shop> and as a sibling section under the root
    NESTED = "nested"    # only inside <shop>
    SIBLING = "sibling"  # only directly under the root element


@dataclass(frozen=True)
class ParserConfig:
    """Configuration accepted by the feed parser."""
    max_errors: Optional[int] = None
    strict_required_fields: bool = False
    offers_layout: OffersLayout = OffersLayout.ANY
    offer_tags: FrozenSet[str] = field(default_factory=lambda: frozenset({'offer'}))
    root_tag: str = 'yml_catalog'
    html_entities: bool = False
    chunk_size: int = 64 * 1024
    max_markup_size: int = 1024 * 1024

    def __post_init__(self):
        if self.max_errors is not None and (
                isinstance(self.max_errors, bool)
                or not isinstance(self.max_errors, int)
                or self.max_errors < 0):
            raise ValueError(f"max_errors must be a non-negative integer, got {self.max_errors!r}")
        if not isinstance(self.chunk_size, int) or self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be a positive integer, got {self.chunk_size!r}")
        if not isinstance(self.max_markup_size, int) or self.max_markup_size <= 0:
            raise ValueError(f"max_markup_size must be a positive integer, got {self.max_markup_size!r}")
        if not self.offer_tags:
            raise ValueError("offer_tags must not be empty")
        # normalize loosely typed values coming from YAML
        object.__setattr__(self, 'offers_layout', OffersLayout(self.offers_layout))
        tags = self.offer_tags
        if isinstance(tags, str):
            tags = [tags]
        object.__setattr__(self, 'offer_tags', frozenset(tags))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParserConfig':
        """
        Build a config from a plain mapping (e.g. a YAML section).

        Args:
            data: Mapping of field name to value

        Returns:
            ParserConfig

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown parser config keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ValueError(f"Invalid parser config: {e}") from e
