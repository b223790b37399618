"""
Catalog statistics - totals and breakdowns for the catalog dashboard.

Every figure is computed independently; a failing query is logged and
reported as zero / empty instead of failing the whole response.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import CatmatItem, CatserItem

logger = logging.getLogger(__name__)

TOP_GROUPS = 10


class CatalogStatsService:
    """Read-only aggregate queries over catmat_item / catser_item."""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_catalog_stats(self) -> Dict[str, Any]:
        """
        Returns:
            {
                'catmat_total': int,
                'catser_total': int,
                'catmat_by_group': [{'group_code', 'group_name', 'count'}],
                'catser_by_group': [{'group_code', 'group_name', 'count'}],
                'catser_by_status': [{'status', 'count'}]
            }
        """
        return {
            'catmat_total': self._total(CatmatItem),
            'catser_total': self._total(CatserItem),
            'catmat_by_group': self._by_group(CatmatItem),
            'catser_by_group': self._by_group(CatserItem),
            'catser_by_status': self._catser_by_status(),
        }

    def _total(self, model) -> int:
        try:
            return self.session.query(func.count(model.id)).scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to count {model.__tablename__}: {e}")
            self.session.rollback()
            return 0

    def _by_group(self, model) -> List[Dict[str, Any]]:
        count = func.count(model.id).label('count')
        try:
            rows = (
                self.session.query(model.group_code, model.group_name, count)
                .group_by(model.group_code, model.group_name)
                .order_by(count.desc(), model.group_code)
                .limit(TOP_GROUPS)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to group {model.__tablename__} by group: {e}")
            self.session.rollback()
            return []

        return [
            {'group_code': group_code, 'group_name': group_name, 'count': total}
            for group_code, group_name, total in rows
        ]

    def _catser_by_status(self) -> List[Dict[str, Any]]:
        count = func.count(CatserItem.id).label('count')
        try:
            rows = (
                self.session.query(CatserItem.status, count)
                .group_by(CatserItem.status)
                .order_by(CatserItem.status)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to group catser_item by status: {e}")
            self.session.rollback()
            return []

        return [{'status': status, 'count': total} for status, total in rows]
