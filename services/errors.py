"""
Exception hierarchy for catalog import, search and caching.

Services raise these; the API layer maps them to HTTP responses and the
background tasks record them as job failures.
"""

from typing import Optional


class CatalogError(Exception):
    """Base class for catalog service errors."""


class FormatError(CatalogError):
    """The upload could not be read as a workbook (or has no sheets)."""


class ImportFailed(CatalogError):
    """
    Import failure that still carries the rows accumulated so far.

    Attributes:
        result: Partial ImportResult built before the failure was detected
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class SchemaError(ImportFailed):
    """The catalog header row was never found in the sheet."""


class SpreadsheetStreamError(ImportFailed):
    """The workbook stream broke while rows were being read."""


class RowValueError(CatalogError):
    """A row could not be mapped to typed catalog fields; the row is skipped."""


class ImportCancelled(CatalogError):
    """The caller asked the import to stop; partial counts are discarded."""


class QueryError(CatalogError):
    """The ranked search query against the backing store failed."""


class CacheTransientError(CatalogError):
    """
    The shared cache tier failed on read.

    Callers should bypass the cache and go to the source of truth.
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key
