"""HTTP routers."""

from .messages import router as messages_router
from .orders import router as orders_router

__all__ = ["messages_router", "orders_router"]
