"""
CORS configuration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings

# Development origins (local channel adapters and dashboards)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]

ALLOWED_HEADERS = [
    "Content-Type",
    "X-Request-ID",
    "Accept",
]


def get_cors_origins() -> list[str]:
    """ALLOWED_ORIGINS (comma-separated) when set, else the development origins."""
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Request-ID"],
    )
