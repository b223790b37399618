"""
Tests for the catalog import pipeline.

Runs against an in-memory SQLite database; the upsert path is the same
INSERT ... ON CONFLICT DO UPDATE used on PostgreSQL.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeWorksheet, Unprintable
from backend.models.schema import CatmatItem, CatserItem
from services import catalog_import_service
from services.catalog_descriptors import CATMAT, MISSING_FIELDS_MESSAGE
from services.catalog_import_service import CatalogImportService, ImportResult, RowError
from services.catalog_store import CatalogStore
from services.errors import FormatError, ImportCancelled, SchemaError, SpreadsheetStreamError
from services.spreadsheet_reader import open_spreadsheet


@pytest.fixture
def service(engine):
    return CatalogImportService(CatalogStore(engine))


def replace_worksheet(monkeypatch, worksheet):
    """Make the import read ``worksheet`` instead of the uploaded workbook's first sheet."""
    def open_with_worksheet(stream):
        reader = open_spreadsheet(stream)
        reader._sheet = worksheet
        return reader

    monkeypatch.setattr(catalog_import_service, 'open_spreadsheet', open_with_worksheet)


class FailingStore:
    """Store whose upserts fail for the given item codes."""

    def __init__(self, store, failing_codes):
        self.store = store
        self.failing_codes = set(failing_codes)

    def upsert(self, descriptor, values):
        if values.get('item_code') in self.failing_codes:
            raise OperationalError('INSERT', {}, Exception('deadlock detected'))
        self.store.upsert(descriptor, values)


class TestCatmatImport:
    """CATMAT imports."""

    def test_valid_rows_are_saved(self, service, session, make_workbook, catmat_header, catmat_rows):
        data = make_workbook([catmat_header] + catmat_rows)

        result = service.import_catmat(data)

        assert result.rows_read == 2
        assert result.rows_saved == 2
        assert result.rows_skipped == 0
        assert result.errors == []

        items = session.query(CatmatItem).order_by(CatmatItem.item_code).all()
        assert [item.item_code for item in items] == [150001, 150002]
        assert items[0].ncm_code == '9302.00.00'
        assert items[1].ncm_code is None

    def test_row_missing_required_text(self, service, make_workbook, catmat_header, catmat_rows):
        invalid = [10, 'ARMAMENTO', 1006, '', 2347, 'FUZIL', 150003, 'FUZIL 7.62', '']
        data = make_workbook([catmat_header] + catmat_rows + [invalid])

        result = service.import_catmat(data)

        assert result.to_dict() == {
            'rows_read': 3,
            'rows_saved': 2,
            'rows_skipped': 1,
            'errors': [{'row': 4, 'reason': MISSING_FIELDS_MESSAGE}],
        }

    def test_non_numeric_code_skips_only_that_row(self, service, session, make_workbook,
                                                   catmat_header, catmat_rows):
        bad = ['abc', 'ARMAMENTO', 1005, 'ARMAS DE FOGO', 2345, 'PISTOLA', 150009, 'PISTOLA', '']
        data = make_workbook([catmat_header, catmat_rows[0], bad, catmat_rows[1]])

        result = service.import_catmat(data)

        assert result.rows_read == 3
        assert result.rows_saved == 2
        assert len(result.errors) == 1
        assert result.errors[0].row == 3
        assert 'código do grupo' in result.errors[0].reason
        assert session.query(CatmatItem).count() == 2

    def test_rows_before_header_and_blank_rows_are_ignored(self, service, make_workbook,
                                                           catmat_header, catmat_rows):
        data = make_workbook([
            ['Catálogo de Materiais - exportação'],
            [],
            catmat_header,
            catmat_rows[0],
            [None, None, None],
            catmat_rows[1],
        ])

        result = service.import_catmat(data)

        assert result.rows_read == 2
        assert result.rows_saved == 2
        assert result.errors == []

    def test_header_not_found(self, service, make_workbook, catmat_rows):
        data = make_workbook([['relatório'], catmat_rows[0]])

        with pytest.raises(SchemaError) as exc_info:
            service.import_catmat(data)

        assert str(exc_info.value) == 'cabeçalho CATMAT não encontrado'
        assert exc_info.value.result.rows_read == 0
        assert exc_info.value.result.rows_saved == 0

    def test_reimport_updates_instead_of_duplicating(self, service, session, make_workbook,
                                                     catmat_header, catmat_rows):
        service.import_catmat(make_workbook([catmat_header] + catmat_rows))

        renamed = list(catmat_rows[0])
        renamed[7] = 'PISTOLA CALIBRE 9MM - NOVA DESCRIÇÃO'
        result = service.import_catmat(make_workbook([catmat_header, renamed, catmat_rows[1]]))

        assert result.rows_saved == 2
        assert session.query(CatmatItem).count() == 2
        item = session.query(CatmatItem).filter_by(item_code=150001).one()
        assert item.item_description == 'PISTOLA CALIBRE 9MM - NOVA DESCRIÇÃO'

    def test_store_failure_is_a_row_error(self, engine, session, make_workbook,
                                          catmat_header, catmat_rows):
        service = CatalogImportService(FailingStore(CatalogStore(engine), {150002}))

        result = service.import_catmat(make_workbook([catmat_header] + catmat_rows))

        assert result.rows_read == 2
        assert result.rows_saved == 1
        assert result.rows_skipped == 1
        assert result.errors[0].row == 3
        assert result.errors[0].reason.startswith('erro ao salvar:')
        assert session.query(CatmatItem).count() == 1

    def test_unreadable_upload(self, service):
        with pytest.raises(FormatError):
            service.import_catmat(b'PK\x03\x04 truncated')

    def test_cancellation(self, service, session, make_workbook, catmat_header, catmat_rows):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ImportCancelled) as exc_info:
            service.import_catalog(CATMAT, make_workbook([catmat_header] + catmat_rows), cancel)

        assert 'cancelada na linha 1' in str(exc_info.value)
        assert session.query(CatmatItem).count() == 0

    def test_stream_failure_keeps_partial_result(self, service, session, monkeypatch, make_workbook,
                                                 catmat_header, catmat_rows):
        """Rows saved before the workbook broke are reported with the error."""
        replace_worksheet(monkeypatch, FakeWorksheet([catmat_header] + catmat_rows + [catmat_rows[0]],
                                                     fail_after=3))

        with pytest.raises(SpreadsheetStreamError) as exc_info:
            service.import_catmat(make_workbook([['x']]))

        assert exc_info.value.result == ImportResult(rows_read=2, rows_saved=2)
        assert session.query(CatmatItem).count() == 2

    def test_undecodable_row_is_skipped(self, service, monkeypatch, make_workbook,
                                        catmat_header, catmat_rows):
        rows = [catmat_header, catmat_rows[0], [Unprintable()], catmat_rows[1]]
        replace_worksheet(monkeypatch, FakeWorksheet(rows))

        result = service.import_catmat(make_workbook([['x']]))

        assert result.rows_read == 2
        assert result.rows_saved == 2
        assert result.rows_skipped == 1
        assert result.errors == [RowError(row=3, reason='erro lendo linha: invalid cell value')]

    def test_progress_updates(self, engine, make_workbook, catmat_header, catmat_rows):
        updates = []
        service = CatalogImportService(
            CatalogStore(engine),
            progress_callback=lambda stage, percent, message: updates.append((stage, percent)),
            progress_every=1
        )

        service.import_catmat(make_workbook([catmat_header] + catmat_rows))

        stages = [stage for stage, _ in updates]
        assert stages[0] == 'reading'
        assert stages.count('importing') == 2
        assert updates[-1] == ('complete', 100)
        assert all(0 <= percent <= 100 for _, percent in updates)


class TestCatserImport:
    """CATSER imports."""

    def test_valid_rows_are_saved(self, service, session, make_workbook, catser_header, catser_rows):
        result = service.import_catser(make_workbook([catser_header] + catser_rows))

        assert result.rows_read == 2
        assert result.rows_saved == 2
        statuses = {item.service_code: item.status for item in session.query(CatserItem).all()}
        assert statuses == {5001: 'Ativo', 6001: 'Inativo'}

    def test_catmat_sheet_is_not_a_catser_sheet(self, service, make_workbook, catmat_header, catmat_rows):
        with pytest.raises(SchemaError) as exc_info:
            service.import_catser(make_workbook([catmat_header] + catmat_rows))

        assert str(exc_info.value) == 'cabeçalho CATSER não encontrado'

    def test_reimport_is_idempotent(self, service, session, make_workbook, catser_header, catser_rows):
        data = make_workbook([catser_header] + catser_rows)

        service.import_catser(data)
        service.import_catser(data)

        assert session.query(CatserItem).count() == 2


class TestImportResult:

    def test_skip_keeps_counters_consistent(self):
        result = ImportResult(rows_read=2)
        result.skip(5, 'campos obrigatórios ausentes na linha')

        assert result.rows_skipped == len(result.errors) == 1
        assert result.errors[0] == RowError(row=5, reason='campos obrigatórios ausentes na linha')

    def test_from_dict(self):
        data = {'rows_read': 3, 'rows_saved': 2, 'rows_skipped': 1,
                'errors': [{'row': 4, 'reason': 'x'}]}
        assert ImportResult.from_dict(data).to_dict() == data
