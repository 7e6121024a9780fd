"""
JSON exporter for parsed feeds.
Writes the catalog header as a JSON document and offers as JSONL
(newline-delimited), one offer at a time.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional
import json

from .models import Catalog, Offer

logger = logging.getLogger(__name__)


class FeedExporter:
    """Export catalog and offers to JSON files."""

    def __init__(self, output_dir: Path):
        """
        Initialize exporter.

        Args:
            output_dir: Directory for export files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export_catalog(self, catalog: Catalog, filename: str = 'catalog.json',
                       indent: Optional[int] = 2) -> Path:
        """
        Export the catalog (date and shop header) as a JSON document.

        Args:
            catalog: Parsed catalog
            filename: Output filename
            indent: Indentation level (None for compact output)

        Returns:
            Path to exported JSON file
        """
        output_path = self.output_dir / filename
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(catalog.to_dict(), f, indent=indent, ensure_ascii=False)

        logger.info(f"Exported catalog to {output_path}")
        return output_path

    def export_offers(self, offers: Iterable[Offer], filename: str = 'offers.jsonl') -> int:
        """
        Export offers as JSONL while they are being produced.

        Args:
            offers: Offers, typically a live ``FeedParser.offers()`` iterator
            filename: Output filename

        Returns:
            Number of offers written
        """
        output_path = self.output_dir / filename
        count = 0
        with open(output_path, 'w', encoding='utf-8') as f:
            for offer in offers:
                f.write(json.dumps(offer.to_dict(), ensure_ascii=False) + '\n')
                count += 1

        logger.info(f"Exported {count} offers to {output_path}")
        return count
