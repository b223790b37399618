"""
Tests for the streaming worksheet reader.
"""

import io
from datetime import date, datetime

import pytest
from openpyxl import Workbook

from conftest import FakeWorksheet, Unprintable
from services.errors import FormatError, SpreadsheetStreamError
from services.spreadsheet_reader import SpreadsheetReader, cell_to_text, open_spreadsheet


class TestCellToText:
    """Cell value rendering."""

    def test_blank_cell(self):
        assert cell_to_text(None) == ''

    def test_integral_float_drops_decimal(self):
        assert cell_to_text(150001.0) == '150001'
        assert cell_to_text(12.5) == '12.5'

    def test_strings_and_ints_unchanged(self):
        assert cell_to_text('ARMAMENTO') == 'ARMAMENTO'
        assert cell_to_text(10) == '10'

    def test_booleans(self):
        assert cell_to_text(True) == 'TRUE'
        assert cell_to_text(False) == 'FALSE'

    def test_dates_iso_format(self):
        assert cell_to_text(date(2024, 3, 1)) == '2024-03-01'
        assert cell_to_text(datetime(2024, 3, 1, 8, 30)) == '2024-03-01T08:30:00'


class TestSpreadsheetReader:
    """Workbook opening and row streaming."""

    def test_rows_are_numbered_from_one(self, make_workbook):
        data = make_workbook([['a', 'b'], ['c', 'd'], ['e', 'f']])

        reader = open_spreadsheet(data)
        rows = list(reader.rows())

        assert [row.number for row in rows] == [1, 2, 3]
        assert rows[1].cells == ['c', 'd']
        assert all(row.error is None for row in rows)
        assert reader.stream_error is None

    def test_first_sheet_name(self, make_workbook):
        reader = open_spreadsheet(make_workbook([['x']], title='CATMAT'))
        assert reader.sheet_name == 'CATMAT'
        list(reader.rows())

    def test_accepts_file_objects(self, make_workbook):
        reader = SpreadsheetReader(io.BytesIO(make_workbook([['x', 1]])))
        rows = list(reader.rows())
        assert rows[0].cells == ['x', '1']

    def test_rows_can_only_be_read_once(self, make_workbook):
        reader = open_spreadsheet(make_workbook([['x']]))
        list(reader.rows())

        with pytest.raises(RuntimeError):
            list(reader.rows())

    def test_not_a_workbook(self):
        with pytest.raises(FormatError) as exc_info:
            open_spreadsheet(b'this is not a zip archive')

        assert 'arquivo XLSX inválido' in str(exc_info.value)

    def test_empty_upload(self):
        with pytest.raises(FormatError):
            open_spreadsheet(b'')

    def test_only_first_sheet_is_read(self):
        wb = Workbook()
        wb.active.title = 'CATMAT'
        wb.active.append(['primeira'])
        second = wb.create_sheet('Notas')
        second.append(['segunda'])
        buffer = io.BytesIO()
        wb.save(buffer)

        reader = open_spreadsheet(buffer.getvalue())
        rows = list(reader.rows())

        assert reader.sheet_name == 'CATMAT'
        assert [row.cells for row in rows] == [['primeira']]

    def test_undecodable_row_is_reported_and_reading_continues(self, make_workbook):
        reader = open_spreadsheet(make_workbook([['x']]))
        reader._sheet = FakeWorksheet([['a'], [Unprintable()], ['c']])

        rows = list(reader.rows())

        assert [row.number for row in rows] == [1, 2, 3]
        assert rows[1].error == 'invalid cell value'
        assert rows[2].cells == ['c']
        assert reader.stream_error is None

    def test_stream_failure_stops_iteration(self, make_workbook):
        reader = open_spreadsheet(make_workbook([['x']]))
        reader._sheet = FakeWorksheet([['a'], ['b'], ['c'], ['d']], fail_after=3)

        rows = list(reader.rows())

        assert [row.cells for row in rows] == [['a'], ['b'], ['c']]
        assert isinstance(reader.stream_error, SpreadsheetStreamError)
        assert 'falha ao ler linhas da planilha' in str(reader.stream_error)
