"""
Catalog Search Service - full-text search over CATMAT / CATSER.

Each search issues the ranked page query against the database search
function (``catmat_search_fts`` / ``catser_search_fts``) and a separate
COUNT(*) with the same predicate for the pagination total. Results are
read through / written through the tiered cache.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from services.cache_service import NullCache
from services.errors import CacheTransientError, QueryError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100

T = TypeVar('T')


# Parameters ------------------------------------------------------------------

@dataclass
class CatmatSearchParams:
    """CATMAT search request; None filters do not constrain the result."""

    query: str = ''
    group_code: Optional[int] = None
    class_code: Optional[int] = None
    pdm_code: Optional[int] = None
    ncm_code: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0


@dataclass
class CatserSearchParams:
    """CATSER search request; None filters do not constrain the result."""

    query: str = ''
    group_code: Optional[int] = None
    class_code: Optional[int] = None
    service_code: Optional[int] = None
    status: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0


# Results ---------------------------------------------------------------------

@dataclass
class CatmatSearchItem:
    id: int
    group_code: int
    group_name: str
    class_code: int
    class_name: str
    pdm_code: int
    pdm_name: str
    item_code: int
    item_description: str
    ncm_code: Optional[str] = None
    rank: float = 0.0


@dataclass
class CatserSearchItem:
    id: int
    material_service_type: str
    group_code: int
    group_name: str
    class_code: int
    class_name: str
    service_code: int
    service_description: str
    status: str
    rank: float = 0.0


@dataclass
class SearchResult(Generic[T]):
    """One page of search results; ``total`` ignores limit/offset."""

    data: List[T] = field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': [asdict(item) for item in self.data],
            'total': self.total,
            'limit': self.limit,
            'offset': self.offset,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], item_cls: Type[T]) -> 'SearchResult[T]':
        return cls(
            data=[item_cls(**item) for item in data['data']],
            total=data['total'],
            limit=data['limit'],
            offset=data['offset'],
        )


# Query definitions ------------------------------------------------------------

@dataclass(frozen=True)
class SearchTarget:
    """
    Describes one catalog's search function and count predicate.

    Attributes:
        catalog: Catalog slug, used in cache keys and logs
        function: Database ranked-search function
        table: Table the count query runs against
        item_cls: Result item type
        filters: (parameter, SQL type, column) for each optional equality filter,
                 in the function's positional order
    """

    catalog: str
    function: str
    table: str
    item_cls: Type
    filters: Tuple[Tuple[str, str, str], ...]

    @property
    def columns(self) -> List[str]:
        return [f.name for f in fields(self.item_cls)]

    def search_sql(self) -> TextClause:
        args = ['CAST(:query AS text)']
        args += [f'CAST(:{param} AS {sql_type})' for param, sql_type, _ in self.filters]
        args += ['CAST(:limit AS integer)', 'CAST(:offset AS integer)']
        return text(
            f"SELECT {', '.join(self.columns)} "
            f"FROM {self.function}({', '.join(args)})"
        )

    def count_sql(self) -> TextClause:
        predicates = [
            "(CAST(:query AS text) IS NULL OR search_document @@ "
            "websearch_to_tsquery('portuguese_unaccent', CAST(:query AS text)))"
        ]
        predicates += [
            f"(CAST(:{param} AS {sql_type}) IS NULL OR {column} = CAST(:{param} AS {sql_type}))"
            for param, sql_type, column in self.filters
        ]
        return text(f"SELECT COUNT(*) FROM {self.table} WHERE " + ' AND '.join(predicates))


CATMAT_SEARCH = SearchTarget(
    catalog='catmat',
    function='catmat_search_fts',
    table='catmat_item',
    item_cls=CatmatSearchItem,
    filters=(
        ('group_code', 'smallint', 'group_code'),
        ('class_code', 'integer', 'class_code'),
        ('pdm_code', 'integer', 'pdm_code'),
        ('ncm_code', 'text', 'ncm_code'),
    ),
)

CATSER_SEARCH = SearchTarget(
    catalog='catser',
    function='catser_search_fts',
    table='catser_item',
    item_cls=CatserSearchItem,
    filters=(
        ('group_code', 'smallint', 'group_code'),
        ('class_code', 'integer', 'class_code'),
        ('service_code', 'integer', 'service_code'),
        ('status', 'text', 'status'),
    ),
)


def normalize_pagination(limit: int, offset: int) -> Tuple[int, int]:
    """Default/clamp the page size to 1..100 (0 or less means 50) and offset to >= 0."""
    if limit <= 0:
        limit = DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)
    return limit, max(offset, 0)


def build_cache_key(catalog: str, bind: Dict[str, Any]) -> str:
    """Identical normalized requests map to the same key."""
    canonical = json.dumps(bind, sort_keys=True, ensure_ascii=False, separators=(',', ':'))
    return f"catalog:{catalog}:search:{canonical}"


class CatalogSearchService:
    """
    Ranked, filtered, paginated catalog search.

    Args:
        engine: Pooled SQLAlchemy engine
        cache: TieredCache, or NullCache when caching is not configured
    """

    def __init__(self, engine: Engine, cache=None):
        self.engine = engine
        self.cache = cache if cache is not None else NullCache()

    def search_catmat(self, params: CatmatSearchParams) -> SearchResult[CatmatSearchItem]:
        return self.search(CATMAT_SEARCH, params)

    def search_catser(self, params: CatserSearchParams) -> SearchResult[CatserSearchItem]:
        return self.search(CATSER_SEARCH, params)

    def search(self, target: SearchTarget, params) -> SearchResult:
        """
        Run one catalog search.

        Raises:
            QueryError: If the ranked query fails (a failing count query only
                        degrades ``total`` to the page length)
        """
        limit, offset = normalize_pagination(params.limit, params.offset)
        bind = self._bind_params(target, params)
        bind.update(limit=limit, offset=offset)

        key = build_cache_key(target.catalog, bind)
        try:
            hit, cached = self.cache.get(key)
        except CacheTransientError as e:
            logger.warning(f"{target.catalog} search cache unavailable, querying database: {e}")
            hit, cached = False, None

        if hit:
            logger.debug(f"{target.catalog} search served from cache")
            return SearchResult.from_dict(cached, target.item_cls)

        items = self._fetch_page(target, bind)
        total = self._count(target, bind, fallback=len(items))

        result = SearchResult(data=items, total=total, limit=limit, offset=offset)
        self.cache.set(key, result.to_dict())

        logger.info(f"{target.catalog} search q={bind['query']!r}: "
                    f"{len(items)} items (total {total}, limit {limit}, offset {offset})")
        return result

    @staticmethod
    def _bind_params(target: SearchTarget, params) -> Dict[str, Any]:
        query = (params.query or '').strip()
        bind = {'query': query or None}
        for param, _, _ in target.filters:
            bind[param] = getattr(params, param)
        return bind

    def _fetch_page(self, target: SearchTarget, bind: Dict[str, Any]) -> List[Any]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(target.search_sql(), bind).mappings().all()
        except SQLAlchemyError as e:
            logger.error(f"{target.catalog} search query failed: {e}")
            raise QueryError(f"failed to search {target.catalog}: {e}") from e

        items = []
        for row in rows:
            try:
                values = {column: row[column] for column in target.columns}
                values['rank'] = float(values['rank'] or 0.0)
                items.append(target.item_cls(**values))
            except (KeyError, TypeError, ValueError) as e:
                raise QueryError(f"failed to scan {target.catalog} row: {e}") from e
        return items

    def _count(self, target: SearchTarget, bind: Dict[str, Any], fallback: int) -> int:
        count_bind = {k: v for k, v in bind.items() if k not in ('limit', 'offset')}
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(target.count_sql(), count_bind).scalar_one())
        except SQLAlchemyError as e:
            # Understates the total on pages past the first
            logger.warning(f"{target.catalog} count query failed, using page length: {e}")
            return fallback
