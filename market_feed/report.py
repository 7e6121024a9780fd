"""
Parse error report generator.
Summarizes feed diagnostics and exports them to JSON, CSV, XLSX or a
console table.
"""

import csv
import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from tabulate import tabulate

from .models import ParseError

logger = logging.getLogger(__name__)

COLUMNS = ['line', 'column', 'kind', 'severity', 'message', 'value']


class ErrorReport:
    """Generates reports over the errors of one parse run."""

    def __init__(self,
                 errors: List[ParseError],
                 offer_count: int = 0,
                 feed_name: Optional[str] = None,
                 suppressed: int = 0):
        self.errors = list(errors)
        self.offer_count = offer_count
        self.feed_name = feed_name
        self.suppressed = suppressed
        self.generated_at = datetime.now()

    def summary(self) -> Dict[str, Any]:
        """
        Generate report summary.

        Returns:
            Summary dict with counts by kind and the most common messages
        """
        by_kind = Counter(error.kind.value for error in self.errors)
        messages = Counter(error.message for error in self.errors)
        top_messages = messages.most_common(5)

        return {
            'feed_name': self.feed_name,
            'generated_at': self.generated_at.isoformat(),
            'offer_count': self.offer_count,
            'error_count': len(self.errors) + self.suppressed,
            'recorded_errors': len(self.errors),
            'suppressed_errors': self.suppressed,
            'errors_by_kind': dict(by_kind),
            'top_messages': dict(top_messages),
        }

    def export_json(self, output_path: Path) -> Path:
        """
        Export summary and every recorded error to JSON.

        Args:
            output_path: Path to save report

        Returns:
            Path to saved report
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        report = {
            'summary': self.summary(),
            'errors': [error.to_dict() for error in self.errors],
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, ensure_ascii=False)

        logger.info(f"Error report exported to {output_path}")
        return output_path

    def export_csv(self, output_path: Path) -> Path:
        """Export errors as CSV rows, one per error."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=COLUMNS)
            writer.writeheader()
            for error in self.errors:
                writer.writerow(error.to_dict())

        logger.info(f"Error report exported to {output_path}")
        return output_path

    def export_xlsx(self, output_path: Path) -> Path:
        """
        Export errors to an Excel workbook.

        The first sheet lists every error; the second holds the summary
        counts by kind.

        Args:
            output_path: Path to save workbook

        Returns:
            Path to saved workbook
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        workbook = Workbook()
        ws = workbook.active
        ws.title = 'Errors'
        ws.append(COLUMNS)
        for error in self.errors:
            row = error.to_dict()
            ws.append([row[column] for column in COLUMNS])
        self._format_sheet(ws, COLUMNS)

        summary = self.summary()
        ws_summary = workbook.create_sheet('Summary')
        ws_summary.append(['kind', 'count'])
        for kind, count in summary['errors_by_kind'].items():
            ws_summary.append([kind, count])
        ws_summary.append(['suppressed', self.suppressed])
        ws_summary.append(['offers', self.offer_count])
        self._format_sheet(ws_summary, ['kind', 'count'])

        workbook.save(output_path)
        logger.info(f"Error report exported to {output_path}")
        return output_path

    @staticmethod
    def _format_sheet(ws, header: List[str]) -> None:
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center", vertical="center")

        for idx, name in enumerate(header, 1):
            width = 60 if name == 'message' else max(10, len(name) + 2)
            ws.column_dimensions[get_column_letter(idx)].width = width
        ws.freeze_panes = 'A2'

    def format_table(self, limit: int = 20) -> str:
        """Render the first ``limit`` errors as a console table."""
        rows = [
            [error.line, error.column, error.kind.value, error.message]
            for error in self.errors[:limit]
        ]
        table = tabulate(rows, headers=['Line', 'Col', 'Kind', 'Message'], tablefmt='grid')
        hidden = len(self.errors) - len(rows) + self.suppressed
        if hidden > 0:
            table += f"\n... and {hidden} more errors"
        return table
