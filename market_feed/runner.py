"""
Main runner for feed parsing.
Opens a feed, streams its offers to JSONL, exports the catalog and the
error report, and prints a summary.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from tabulate import tabulate

from .config import OffersLayout, ParserConfig
from .config_loader import REPORT_FORMATS, ConfigLoader, OutputSettings
from .errors import FatalFeedError
from .exporter import FeedExporter
from .feed_source import is_url, open_feed
from .logging_setup import setup_logging
from .models import ParseResult, ParseStatus
from .parser import FeedParser
from .report import ErrorReport
from .utils import generate_run_id, redact_url

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STREAM_FAILURE = 1
EXIT_FATAL = 2


def feed_name(source: str) -> str:
    """Derive a file-name friendly feed name from a path or URL."""
    path = urlsplit(source).path if is_url(source) else source
    name = Path(path).name
    for suffix in ('.gz', '.xml', '.yml'):
        if name.lower().endswith(suffix):
            name = name[:-len(suffix)]
    return name or 'feed'


class FeedRunner:
    """Runs one feed through parsing, export and reporting."""

    def __init__(self, parser_config: ParserConfig, output: OutputSettings):
        """
        Initialize runner.

        Args:
            parser_config: Parser configuration
            output: Output directory and report formats
        """
        self.parser_config = parser_config
        self.output = output
        self.run_id = generate_run_id()
        self.exporter = FeedExporter(output.dir)

        logger.info(f"FeedRunner initialized with run_id: {self.run_id}")

    def run(self, source: str) -> ParseResult:
        """
        Parse a feed and write all outputs.

        Args:
            source: Feed path or URL

        Returns:
            ParseResult of the run

        Raises:
            FatalFeedError: If the document cannot be processed
            OSError: If the feed cannot be opened
        """
        name = feed_name(source)
        logger.info(f"Processing feed: {redact_url(source)}")

        try:
            with open_feed(source, chunk_size=self.parser_config.chunk_size) as stream:
                parser = FeedParser(stream, self.parser_config)
                self.exporter.export_offers(parser.offers(), f"{name}_offers.jsonl")
                result = parser.result
        except FatalFeedError as e:
            self.write_reports(ErrorReport(e.errors, e.offer_count, name), name)
            raise

        self.exporter.export_catalog(result.catalog, f"{name}_catalog.json")
        self.write_reports(ErrorReport(result.errors, result.offer_count, name, result.suppressed_errors), name)

        logger.info(f"Run {self.run_id} complete: {result.offer_count} offers, status {result.status.value}")
        return result

    def write_reports(self, report: ErrorReport, name: str) -> List[Path]:
        paths = []
        for report_format in self.output.report_formats:
            output_path = self.output.dir / f"{name}_errors.{report_format}"
            if report_format == 'json':
                paths.append(report.export_json(output_path))
            elif report_format == 'csv':
                paths.append(report.export_csv(output_path))
            elif report_format == 'xlsx':
                paths.append(report.export_xlsx(output_path))
        return paths


def print_summary(result: ParseResult) -> None:
    summary = result.summary()
    print(tabulate(list(summary.items()), headers=['Field', 'Value'], tablefmt='grid'))
    if result.errors:
        report = ErrorReport(result.errors, result.offer_count, suppressed=result.suppressed_errors)
        print("\nErrors:\n")
        print(report.format_table())


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Streaming YML product feed parser")

    parser.add_argument('feed', help='Feed file path or http(s) URL')
    parser.add_argument('--config', type=Path, help='YAML config path')
    parser.add_argument('--output-dir', type=Path, help='Directory for exported files')
    parser.add_argument('--max-errors', type=int, help='Stop recording errors after this many')
    parser.add_argument('--strict', action='store_true', default=None,
                        help='Abort when required shop fields are missing')
    parser.add_argument('--offers-layout', choices=[layout.value for layout in OffersLayout],
                        help='Where offer sections are accepted')
    parser.add_argument('--report-format', choices=REPORT_FORMATS, action='append',
                        help='Error report format (repeatable)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level')
    parser.add_argument('--log-dir', type=Path, help='Directory for JSON log files')
    parser.add_argument('--no-json-logs', action='store_true', help='Write plain text log files')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the feed parser CLI."""
    args = build_arg_parser().parse_args(argv)

    try:
        loader = ConfigLoader(args.config)
        log_settings = loader.load_logging_settings()
        output = loader.load_output_settings()
        parser_config = loader.load_parser_config(
            max_errors=args.max_errors,
            strict_required_fields=args.strict,
            offers_layout=args.offers_layout,
        )
    except (OSError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.output_dir:
        output.dir = args.output_dir
    if args.report_format:
        output.report_formats = args.report_format

    setup_logging(
        log_dir=args.log_dir or (log_settings.dir if args.config else None),
        log_level=args.log_level or log_settings.level,
        json_format=log_settings.json and not args.no_json_logs,
    )

    runner = FeedRunner(parser_config, output)
    try:
        result = runner.run(args.feed)
    except FatalFeedError as e:
        logger.error(f"Feed cannot be processed: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"Feed cannot be opened: {e}")
        return EXIT_STREAM_FAILURE

    print_summary(result)
    if result.status == ParseStatus.FAILED:
        return EXIT_STREAM_FAILURE
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
