"""
Repositories: async data access for orders and the catalog.
"""

from order_engine.repositories.base import BaseRepository
from order_engine.repositories.catalog_repository import CatalogRepository
from order_engine.repositories.draft_store import (
    DraftStore,
    DraftStoreError,
    LineItemNotFoundError,
    OrderNotFoundError,
    StatusConflictError,
)

__all__ = [
    "BaseRepository",
    "CatalogRepository",
    "DraftStore",
    "DraftStoreError",
    "LineItemNotFoundError",
    "OrderNotFoundError",
    "StatusConflictError",
]
