"""
Catalog Import Service - Framework-agnostic CATMAT / CATSER spreadsheet import.

Streams the first worksheet of an upload, locates the catalog header,
maps every data row to typed columns and upserts it. A bad row never
aborts the batch: it is counted as skipped and explained in the result.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from services.catalog_descriptors import CATMAT, CATSER, CatalogDescriptor, is_row_empty
from services.catalog_store import CatalogStore
from services.errors import ImportCancelled, RowValueError, SchemaError
from services.spreadsheet_reader import open_spreadsheet

logger = logging.getLogger(__name__)

# Emit an 'importing' progress update every N data rows
DEFAULT_PROGRESS_EVERY = 500


@dataclass
class RowError:
    """Why a single spreadsheet line was not saved."""

    row: int
    reason: str


@dataclass
class ImportResult:
    """Counters and per-row errors of one import call."""

    rows_read: int = 0
    rows_saved: int = 0
    rows_skipped: int = 0
    errors: List[RowError] = field(default_factory=list)

    def skip(self, row: int, reason: str):
        """Record a discarded row."""
        self.rows_skipped += 1
        self.errors.append(RowError(row=row, reason=reason))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImportResult':
        return cls(
            rows_read=data.get('rows_read', 0),
            rows_saved=data.get('rows_saved', 0),
            rows_skipped=data.get('rows_skipped', 0),
            errors=[RowError(**error) for error in data.get('errors') or []],
        )


class CatalogImportService:
    """
    Import pipeline shared by every catalog.

    The catalog-specific parts (header signature, row mapping, upsert
    target) come from a CatalogDescriptor.
    """

    def __init__(
        self,
        store: CatalogStore,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        progress_every: int = DEFAULT_PROGRESS_EVERY
    ):
        """
        Initialize catalog import service.

        Args:
            store: Upsert sink for mapped rows
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            progress_every: Data rows between two 'importing' progress updates
        """
        self.store = store
        self.progress_callback = progress_callback or (lambda *args: None)
        self.progress_every = max(progress_every, 1)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.debug(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def import_catalog(
        self,
        descriptor: CatalogDescriptor,
        stream: Union[bytes, BinaryIO],
        cancel_event: Optional[threading.Event] = None
    ) -> ImportResult:
        """
        Import one spreadsheet into a catalog.

        Args:
            descriptor: Catalog being imported (CATMAT or CATSER)
            stream: XLSX workbook as bytes or a binary file object
            cancel_event: Optional signal checked before every row

        Returns:
            ImportResult with counters and per-row errors

        Raises:
            FormatError: The stream is not a readable workbook
            SchemaError: The header row was never found (carries partial result)
            SpreadsheetStreamError: The workbook broke mid-read (carries partial result)
            ImportCancelled: cancel_event was set; rows already saved stay saved
        """
        label = descriptor.label
        reader = open_spreadsheet(stream)
        logger.info(f"Starting {label} import from worksheet '{reader.sheet_name}'")
        self._emit_progress('reading', 0, f"Reading worksheet '{reader.sheet_name}'")

        result = ImportResult()
        header_found = False
        rows = reader.rows()

        try:
            for row in rows:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"{label} import cancelled at row {row.number} "
                                   f"({result.rows_saved} rows already saved)")
                    raise ImportCancelled(f"importação {label} cancelada na linha {row.number}")

                if row.error is not None:
                    result.skip(row.number, f"erro lendo linha: {row.error}")
                    logger.warning(f"{label}: could not read row {row.number}: {row.error}")
                    continue

                if not header_found:
                    if descriptor.is_header(row.cells):
                        header_found = True
                        logger.info(f"{label}: header found at row {row.number}")
                    continue

                if is_row_empty(row.cells):
                    continue

                result.rows_read += 1

                try:
                    values = descriptor.build_params(row.cells)
                except RowValueError as e:
                    result.skip(row.number, str(e))
                    logger.warning(f"{label}: row {row.number} skipped: {e}")
                    continue

                try:
                    self.store.upsert(descriptor, values)
                except SQLAlchemyError as e:
                    result.skip(row.number, f"erro ao salvar: {e}")
                    logger.error(f"{label}: failed to save row {row.number}: {e}")
                    continue

                result.rows_saved += 1

                if result.rows_read % self.progress_every == 0:
                    self._emit_progress(
                        'importing',
                        _percent(row.number, reader.total_rows),
                        f"Imported {result.rows_saved}/{result.rows_read} rows"
                    )
        finally:
            rows.close()

        if reader.stream_error is not None:
            error = reader.stream_error
            error.result = result
            raise error

        if not header_found:
            logger.error(f"{label}: header not found")
            raise SchemaError(descriptor.header_not_found_message, result=result)

        logger.info(f"{label} import finished: read={result.rows_read} "
                    f"saved={result.rows_saved} skipped={result.rows_skipped}")
        self._emit_progress('complete', 100, f"Saved {result.rows_saved} of {result.rows_read} rows")

        return result

    def import_catmat(self, stream: Union[bytes, BinaryIO],
                      cancel_event: Optional[threading.Event] = None) -> ImportResult:
        return self.import_catalog(CATMAT, stream, cancel_event)

    def import_catser(self, stream: Union[bytes, BinaryIO],
                      cancel_event: Optional[threading.Event] = None) -> ImportResult:
        return self.import_catalog(CATSER, stream, cancel_event)


def _percent(row_number: int, total_rows: Optional[int]) -> float:
    if not total_rows:
        return 0.0
    return min(99.0, 100.0 * row_number / total_rows)
