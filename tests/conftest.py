"""
Pytest configuration and fixtures for catalog import / search tests.
"""

import io
import os
import tempfile
import zipfile

# Settings are read once on first import of api.config
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('CACHE_ENABLED', 'false')
os.environ.setdefault('TEMP_UPLOAD_DIR', os.path.join(tempfile.gettempdir(), 'catalog_test_uploads'))
os.environ.setdefault('LOG_FILE', os.path.join(tempfile.gettempdir(), 'catalog_test.log'))

import pytest
import redis
from dotenv import load_dotenv
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.models.schema import Base
from services.catalog_descriptors import CATMAT_HEADER

# Load environment
load_dotenv()

CATSER_HEADER_ROW = [
    'Tipo Material Serviço',
    'Código Grupo Serviço',
    'Nome Grupo Serviço',
    'Código Classe Material Serviço',
    'Nome Classe Material Serviço',
    'Codigo Material Serviço',
    'Descrição Material Serviço',
    'Sit Atual',
]


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every connection of the test."""
    eng = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session(engine):
    """Create a new database session for a test."""
    Session = sessionmaker(bind=engine)
    sess = Session()
    yield sess
    sess.close()


def build_workbook(rows, title='Plan1') -> bytes:
    """Serialize ``rows`` (lists of cell values) as a one-sheet XLSX workbook."""
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(list(row))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def catmat_header():
    return [caption.upper() for caption in CATMAT_HEADER]


@pytest.fixture
def catser_header():
    return list(CATSER_HEADER_ROW)


@pytest.fixture
def catmat_rows():
    """Two valid CATMAT rows."""
    return [
        [10, 'ARMAMENTO', 1005, 'ARMAS DE FOGO', 2345, 'PISTOLA', 150001, 'PISTOLA CALIBRE 9MM', '9302.00.00'],
        [10, 'ARMAMENTO', 1005, 'ARMAS DE FOGO', 2346, 'REVOLVER', 150002, 'REVOLVER CALIBRE 38', ''],
    ]


@pytest.fixture
def catser_rows():
    """Two valid CATSER rows."""
    return [
        ['Serviço', 1, 'OBRAS', 101, 'CONSTRUCAO', 5001, 'CONSTRUCAO DE ESCOLA', 'Ativo'],
        ['Serviço', 2, 'LIMPEZA', 201, 'CONSERVACAO', 6001, 'LIMPEZA PREDIAL', 'Inativo'],
    ]


# Test doubles -----------------------------------------------------------------

class FakeWorksheet:
    """
    Worksheet stand-in for SpreadsheetReader._sheet; its row stream breaks
    after ``fail_after`` rows when set.
    """

    def __init__(self, rows, fail_after=None):
        self.rows = rows
        self.fail_after = fail_after

    def iter_rows(self, values_only=True):
        for index, row in enumerate(self.rows):
            if self.fail_after is not None and index == self.fail_after:
                raise zipfile.BadZipFile("truncated worksheet entry")
            yield tuple(row)


class Unprintable:
    """Cell value that cannot be rendered as text."""

    def __str__(self):
        raise ValueError("invalid cell value")


class FakeRedis:
    """In-memory stand-in for the subset of redis.Redis the services use."""

    def __init__(self, fail: bool = False):
        self.data = {}
        self.fail = fail
        self.closed = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        return True

    def setex(self, key, ttl, value):
        return self.set(key, value, ex=ttl)

    def close(self):
        self.closed = True


class FakeResult:
    def __init__(self, rows=None, count=None):
        self._rows = rows or []
        self._count = count

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)

    def scalar_one(self):
        return self._count


class FakeConnection:
    def __init__(self, search_engine):
        self.search_engine = search_engine

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement, params=None):
        return self.search_engine.execute(str(statement), dict(params or {}))


class FakeSearchEngine:
    """
    Answers the ranked-search and COUNT(*) statements issued by
    CatalogSearchService without a PostgreSQL server.
    """

    def __init__(self, rows=None, count=None, fail_search=False, fail_count=False):
        self.rows = rows or []
        self.count = count if count is not None else len(self.rows)
        self.fail_search = fail_search
        self.fail_count = fail_count
        self.search_calls = []
        self.count_calls = []

    def connect(self):
        return FakeConnection(self)

    def execute(self, sql, params):
        if 'COUNT(*)' in sql:
            self.count_calls.append((sql, params))
            if self.fail_count:
                raise OperationalError(sql, params, Exception("count timed out"))
            return FakeResult(count=self.count)

        self.search_calls.append((sql, params))
        if self.fail_search:
            raise OperationalError(sql, params, Exception("function does not exist"))
        return FakeResult(rows=self.rows)


@pytest.fixture
def catmat_hits():
    """Rows shaped like catmat_search_fts output."""
    return [
        {
            'id': 1, 'group_code': 10, 'group_name': 'ARMAMENTO', 'class_code': 1005,
            'class_name': 'ARMAS DE FOGO', 'pdm_code': 2345, 'pdm_name': 'PISTOLA',
            'item_code': 150001, 'item_description': 'PISTOLA CALIBRE 9MM',
            'ncm_code': '9302.00.00', 'rank': 0.75,
        },
        {
            'id': 2, 'group_code': 10, 'group_name': 'ARMAMENTO', 'class_code': 1005,
            'class_name': 'ARMAS DE FOGO', 'pdm_code': 2346, 'pdm_name': 'REVOLVER',
            'item_code': 150002, 'item_description': 'REVOLVER CALIBRE 38',
            'ncm_code': None, 'rank': 0.5,
        },
    ]


@pytest.fixture
def catser_hits():
    """Rows shaped like catser_search_fts output."""
    return [
        {
            'id': 1, 'material_service_type': 'Serviço', 'group_code': 1, 'group_name': 'OBRAS',
            'class_code': 101, 'class_name': 'CONSTRUCAO', 'service_code': 5001,
            'service_description': 'CONSTRUCAO DE ESCOLA', 'status': 'Ativo', 'rank': 0.9,
        },
    ]
