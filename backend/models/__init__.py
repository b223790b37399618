"""Models package for the catalog service."""
from backend.models.schema import Base, CatmatItem, CatserItem

__all__ = ['Base', 'CatmatItem', 'CatserItem']
