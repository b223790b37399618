"""
Spreadsheet reader - streams the first worksheet of an XLSX upload as text rows.

The workbook is opened with openpyxl in read-only mode so large catalog
exports are consumed row by row instead of being loaded as a whole.
"""

import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, BinaryIO, Iterator, List, Optional, Union

import openpyxl

from services.errors import FormatError, SpreadsheetStreamError

logger = logging.getLogger(__name__)


@dataclass
class SheetRow:
    """A single worksheet line converted to text cells."""

    number: int
    cells: List[str] = field(default_factory=list)
    error: Optional[str] = None


def cell_to_text(value: Any) -> str:
    """
    Render a cell value the way it reads in the spreadsheet.

    Blank cells become '', integral numbers lose the trailing '.0'
    (catalog codes are often stored as floats) and dates use ISO-8601.
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


class SpreadsheetReader:
    """
    Forward-only reader over the first worksheet of a workbook.

    Usage:
        reader = SpreadsheetReader(upload.file)
        for row in reader.rows():
            ...
        if reader.stream_error:
            ...

    rows() can be consumed once; a new import needs a new reader.
    """

    def __init__(self, stream: Union[bytes, BinaryIO]):
        """
        Open the workbook.

        Args:
            stream: Raw bytes or a binary file object holding an XLSX workbook

        Raises:
            FormatError: If the stream is not a workbook or has no worksheets
        """
        self.stream_error: Optional[SpreadsheetStreamError] = None
        self._consumed = False

        try:
            self._workbook = openpyxl.load_workbook(
                _as_seekable(stream), read_only=True, data_only=True
            )
        except Exception as e:
            logger.warning(f"Could not open workbook: {e}")
            raise FormatError(f"arquivo XLSX inválido: {e}") from e

        if not self._workbook.worksheets:
            self._workbook.close()
            raise FormatError("planilha vazia ou sem abas")

        self._sheet = self._workbook.worksheets[0]
        self.sheet_name = self._sheet.title

        # Declared dimension, only used for progress reporting. Some exporters
        # write a wrong one, so iteration itself ignores it.
        self.total_rows: Optional[int] = self._sheet.max_row
        self._sheet.reset_dimensions()

        logger.debug(f"Opened worksheet '{self.sheet_name}' (declared rows: {self.total_rows})")

    def rows(self) -> Iterator[SheetRow]:
        """
        Yield the worksheet rows in file order.

        A row whose cells cannot be converted is yielded with ``error`` set.
        If the workbook stream itself fails, iteration stops and
        ``stream_error`` is populated.
        """
        if self._consumed:
            raise RuntimeError("spreadsheet rows can only be read once")
        self._consumed = True

        number = 0
        try:
            for raw in self._sheet.iter_rows(values_only=True):
                number += 1
                try:
                    cells = [cell_to_text(value) for value in raw]
                except (TypeError, ValueError) as e:
                    yield SheetRow(number=number, error=str(e))
                    continue
                yield SheetRow(number=number, cells=cells)
        except Exception as e:
            logger.error(f"Worksheet stream failed after row {number}: {e}")
            self.stream_error = SpreadsheetStreamError(
                f"falha ao ler linhas da planilha: {e}"
            )
        finally:
            self.close()

    def close(self):
        """Release the underlying workbook archive."""
        self._workbook.close()


def open_spreadsheet(stream: Union[bytes, BinaryIO]) -> SpreadsheetReader:
    """Open ``stream`` as a workbook; see SpreadsheetReader."""
    return SpreadsheetReader(stream)


def _as_seekable(stream: Union[bytes, BinaryIO]) -> BinaryIO:
    """openpyxl reads the zip directory from the end, so it needs seek()."""
    if isinstance(stream, (bytes, bytearray)):
        return io.BytesIO(stream)
    seekable = getattr(stream, 'seekable', None)
    if seekable is not None and seekable():
        return stream
    return io.BytesIO(stream.read())
