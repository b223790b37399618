"""
Catalog store - insert-or-update of catalog rows by natural business key.

Each upsert runs in its own short transaction so a connection is only held
for a single statement and goes back to the pool on success or failure.
"""

import logging
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from services.catalog_descriptors import CATMAT, CATSER, CatalogDescriptor

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE
_INSERT_CONSTRUCTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


class CatalogStore:
    """Upsert sink for CATMAT / CATSER rows."""

    def __init__(self, engine: Engine):
        """
        Args:
            engine: Pooled SQLAlchemy engine (PostgreSQL, or SQLite for local runs)

        Raises:
            ValueError: If the dialect has no ON CONFLICT support
        """
        dialect = engine.dialect.name
        if dialect not in _INSERT_CONSTRUCTS:
            raise ValueError(f"Catalog upserts are not supported on '{dialect}'")

        self.engine = engine
        self._insert = _INSERT_CONSTRUCTS[dialect]

    def upsert(self, descriptor: CatalogDescriptor, values: Dict[str, Any]):
        """
        Insert a catalog row or update the row with the same natural key.

        Args:
            descriptor: Catalog the row belongs to
            values: Column values produced by the catalog row mapper
        """
        table = descriptor.model.__table__
        stmt = self._insert(table).values(**values)

        changes = {
            column: stmt.excluded[column]
            for column in values
            if column not in descriptor.key_columns
        }
        changes['updated_at'] = func.now()

        stmt = stmt.on_conflict_do_update(
            index_elements=list(descriptor.key_columns),
            set_=changes
        )

        with self.engine.begin() as conn:
            conn.execute(stmt)

    def upsert_catmat(self, values: Dict[str, Any]):
        self.upsert(CATMAT, values)

    def upsert_catser(self, values: Dict[str, Any]):
        self.upsert(CATSER, values)
