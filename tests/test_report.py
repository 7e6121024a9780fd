import csv
import json

import pytest
from openpyxl import load_workbook

from market_feed.models import ErrorKind, ParseError
from market_feed.report import ErrorReport


@pytest.fixture
def report():
    errors = [
        ParseError(3, 5, "invalid value for <delivery> (optional_bool): expected 'true' or 'false'",
                   'maybe', ErrorKind.TYPE_MISMATCH),
        ParseError(7, 1, "unrecognized element <bogus> in <shop>", '', ErrorKind.UNRECOGNIZED_FIELD),
        ParseError(9, 2, "invalid value for <delivery> (optional_bool): expected 'true' or 'false'",
                   'yes', ErrorKind.TYPE_MISMATCH),
    ]
    return ErrorReport(errors, offer_count=12, feed_name='shop', suppressed=4)


def test_summary(report):
    summary = report.summary()
    assert summary['offer_count'] == 12
    assert summary['recorded_errors'] == 3
    assert summary['error_count'] == 7
    assert summary['errors_by_kind'] == {'TypeMismatch': 2, 'UnrecognizedField': 1}
    top_message, top_count = next(iter(summary['top_messages'].items()))
    assert top_count == 2
    assert '<delivery>' in top_message


def test_export_json(report, tmp_path):
    path = report.export_json(tmp_path / 'reports' / 'errors.json')
    data = json.loads(path.read_text(encoding='utf-8'))
    assert data['summary']['feed_name'] == 'shop'
    assert data['errors'][1]['severity'] == 'warning'
    assert data['errors'][0]['value'] == 'maybe'


def test_export_csv(report, tmp_path):
    path = report.export_csv(tmp_path / 'errors.csv')
    with open(path, newline='', encoding='utf-8') as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 3
    assert rows[0]['line'] == '3'
    assert rows[0]['kind'] == 'TypeMismatch'


def test_export_xlsx(report, tmp_path):
    path = report.export_xlsx(tmp_path / 'errors.xlsx')
    workbook = load_workbook(path)
    assert workbook.sheetnames == ['Errors', 'Summary']

    errors_sheet = workbook['Errors']
    assert errors_sheet.max_row == 4
    assert [cell.value for cell in errors_sheet[1]] == ['line', 'column', 'kind', 'severity', 'message', 'value']
    assert errors_sheet['C2'].value == 'TypeMismatch'


def test_format_table(report):
    table = report.format_table(limit=1)
    assert 'TypeMismatch' in table
    assert '... and 6 more errors' in table
