"""
Order engine application.
Entry point for the FastAPI server.
"""

from fastapi import FastAPI

from shared.infrastructure.correlation import CorrelationIdMiddleware
from order_engine.core import configure_cors, lifespan
from order_engine.routers import messages_router, orders_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="Order Engine",
        description="Conversational ordering with booking conflict checks",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationIdMiddleware)
    configure_cors(app)

    app.include_router(messages_router)
    app.include_router(orders_router)

    @app.get("/api/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
