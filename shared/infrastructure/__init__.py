"""
Infrastructure module: database, Redis events, correlation IDs.
"""

from shared.infrastructure.db import (
    AsyncSessionLocal,
    engine,
    get_db,
)

__all__ = [
    "AsyncSessionLocal",
    "engine",
    "get_db",
]
