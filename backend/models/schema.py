"""
SQLAlchemy models for the CATMAT / CATSER catalogs.

The full-text ``search_document`` column, its GIN index and the
``catmat_search_fts`` / ``catser_search_fts`` functions are owned by the
database migrations; the ORM only maps the business columns.
"""

from sqlalchemy import (
    BigInteger, Column, Integer, SmallInteger, String, Text, TIMESTAMP,
    Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid) on SQLite
SurrogateKey = BigInteger().with_variant(Integer, 'sqlite')


class CatmatItem(Base):
    """A material from the CATMAT catalog (group / class / PDM / item)."""

    __tablename__ = 'catmat_item'
    __table_args__ = (
        UniqueConstraint(
            'group_code', 'class_code', 'pdm_code', 'item_code',
            name='uq_catmat_item_natural_key'
        ),
        Index('idx_catmat_item_group', 'group_code'),
        Index('idx_catmat_item_class', 'class_code'),
        Index('idx_catmat_item_pdm', 'pdm_code'),
        {'comment': 'CATMAT material catalog items'}
    )

    id = Column(SurrogateKey, primary_key=True, autoincrement=True)
    group_code = Column(SmallInteger, nullable=False, comment='Código do grupo')
    group_name = Column(Text, nullable=False)
    class_code = Column(Integer, nullable=False, comment='Código da classe')
    class_name = Column(Text, nullable=False)
    pdm_code = Column(Integer, nullable=False, comment='Código do PDM')
    pdm_name = Column(Text, nullable=False)
    item_code = Column(Integer, nullable=False, comment='Código do item')
    item_description = Column(Text, nullable=False)
    ncm_code = Column(String(20), nullable=True, comment='Código NCM (optional)')
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<CatmatItem(id={self.id}, item_code={self.item_code}, pdm_code={self.pdm_code})>"


class CatserItem(Base):
    """A service from the CATSER catalog (group / class / service)."""

    __tablename__ = 'catser_item'
    __table_args__ = (
        UniqueConstraint(
            'group_code', 'class_code', 'service_code',
            name='uq_catser_item_natural_key'
        ),
        Index('idx_catser_item_group', 'group_code'),
        Index('idx_catser_item_status', 'status'),
        {'comment': 'CATSER service catalog items'}
    )

    id = Column(SurrogateKey, primary_key=True, autoincrement=True)
    material_service_type = Column(String(50), nullable=False, comment='Tipo material/serviço')
    group_code = Column(SmallInteger, nullable=False, comment='Grupo serviço')
    group_name = Column(Text, nullable=False)
    class_code = Column(Integer, nullable=False, comment='Classe material')
    class_name = Column(Text, nullable=False)
    service_code = Column(Integer, nullable=False, comment='Código material/serviço')
    service_description = Column(Text, nullable=False)
    status = Column(String(50), nullable=False, comment='Situação atual (Ativo/Inativo)')
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<CatserItem(id={self.id}, service_code={self.service_code}, status='{self.status}')>"
